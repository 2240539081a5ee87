from __future__ import annotations

import numpy as np
import pytest

from config_params import InvalidParametersError, SubtractorParams
from detection.background_subtractor import (
    DualRateBackgroundModel,
    FrameFormatError,
    ShapeMismatchError,
    shift_grid,
)

SCENARIO_PARAMS = SubtractorParams(
    alpha_fast=0.5,
    alpha_slow=0.05,
    beta=0.9,
    min_occupancy_probability=50,
    min_sep_between_fast_and_slow_filter=20,
    max_occupancy_neighbors=200,
    morph_size=1,
)


def _block_frame(shape=(50, 50), y0=20, x0=20, size=10, value=255):
    f = np.zeros(shape, dtype=np.uint8)
    f[y0:y0 + size, x0:x0 + size] = value
    return f


# ---------------- 초기화 ----------------

def test_first_step_returns_empty_mask_and_copies_frame():
    rng = np.random.default_rng(0)
    frame = rng.integers(0, 256, size=(40, 60), dtype=np.uint8)
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    assert not model.initialized
    assert model.fast_estimate is None and model.shape is None

    mask = model.step(frame, 7, -3)

    assert mask.shape == frame.shape and mask.dtype == np.uint8
    assert not mask.any()
    assert np.array_equal(model.fast_estimate, frame)
    assert np.array_equal(model.slow_estimate, frame)
    assert model.offset == (7, -3)
    assert model.shape == (40, 60)


def test_step_does_not_modify_input_frame():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    f1 = np.zeros((50, 50), dtype=np.uint8)
    f2 = _block_frame()
    f2_before = f2.copy()
    model.step(f1, 0, 0)
    model.step(f2, 0, 0)
    assert np.array_equal(f2, f2_before)


def test_estimates_are_read_only():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    model.step(np.zeros((20, 20), dtype=np.uint8), 0, 0)
    with pytest.raises(ValueError):
        model.fast_estimate[0, 0] = 1


# ---------------- 시나리오 ----------------

def test_two_empty_frames_give_empty_mask():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    zeros = np.zeros((50, 50), dtype=np.uint8)
    model.step(zeros, 0, 0)
    mask2 = model.step(zeros, 0, 0)
    assert not mask2.any()


def test_new_block_is_detected_as_blob():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    model.step(np.zeros((50, 50), dtype=np.uint8), 0, 0)
    mask2 = model.step(_block_frame(), 0, 0)

    # 블록 전체가 전경
    assert np.all(mask2[20:30, 20:30] == 255)
    # dilate 로 약간 커질 수는 있지만 블록 주변을 벗어나지 않음
    outside = mask2.copy()
    outside[18:32, 18:32] = 0
    assert not outside.any()
    assert set(np.unique(mask2)) <= {0, 255}


# ---------------- 정적 장면 수렴 ----------------

def test_static_scene_converges_to_empty_mask():
    p = SCENARIO_PARAMS
    model = DualRateBackgroundModel(p)
    model.step(np.zeros((40, 40), dtype=np.uint8), 0, 0)
    scene = np.full((40, 40), 200, dtype=np.uint8)

    fired = False
    converged_at = None
    for i in range(300):
        mask = model.step(scene, 0, 0)
        fired = fired or bool(mask.any())
        sep = np.abs(model.fast_estimate.astype(int) - model.slow_estimate.astype(int))
        if sep.max() <= p.min_sep_between_fast_and_slow_filter:
            assert not mask.any()
            if converged_at is None:
                converged_at = i
    assert fired
    assert converged_at is not None and converged_at < 150


# ---------------- 재정렬 ----------------

def test_shift_grid_translates_with_zero_fill():
    src = np.arange(1, 1 + 6 * 8, dtype=np.uint8).reshape(6, 8)

    out = shift_grid(src, 2, 0)
    assert np.array_equal(out[:, :-2], src[:, 2:])
    assert not out[:, -2:].any()

    out = shift_grid(src, 0, -1)
    assert np.array_equal(out[1:, :], src[:-1, :])
    assert not out[0, :].any()


def test_shift_grid_returns_new_buffer():
    src = np.full((10, 10), 9, dtype=np.uint8)
    for d in ((0, 0), (1, 1)):
        out = shift_grid(src, *d)
        assert not np.shares_memory(out, src)
    assert np.all(src == 9)


def test_exposed_cells_start_without_history():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    model.step(np.full((30, 30), 200, dtype=np.uint8), 0, 0)
    model.step(np.zeros((30, 30), dtype=np.uint8), 3, 0)
    # 새로 드러난 열(오른쪽 3열) 중 이웃까지 전부 빈 2열은 0
    assert not model.fast_estimate[:, -2:].any()
    assert not model.slow_estimate[:, -2:].any()
    assert model.offset == (3, 0)


def _world_sequence(n_steps=8):
    world = np.zeros((300, 300), dtype=np.uint8)
    world[100:104, 80:220] = 220  # 정적 벽
    frames = []
    for t in range(n_steps):
        w = world.copy()
        x = 150 + 2 * t
        w[150:162, x:x + 12] = 255  # 움직이는 블록
        frames.append(w)
    return frames


def _run_window(frames, base_offset, size=120):
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    masks = []
    for t, w in enumerate(frames):
        ox, oy = base_offset[0] + t, base_offset[1]
        masks.append(model.step(w[oy:oy + size, ox:ox + size].copy(), ox, oy))
    return masks


def test_shifted_offsets_give_translated_masks():
    frames = _world_sequence()
    dx, dy = 3, 2
    masks_a = _run_window(frames, (100, 100))
    masks_b = _run_window(frames, (100 + dx, 100 + dy))

    for ma, mb in zip(masks_a, masks_b):
        inner_b = mb[30:90, 30:90]
        inner_a = ma[30 + dy:90 + dy, 30 + dx:90 + dx]
        assert np.array_equal(inner_a, inner_b)
    assert masks_a[-1][30 + dy:90 + dy, 30 + dx:90 + dx].any()


# ---------------- 게이트 / 경계 ----------------

def test_raising_confidence_floor_only_removes_cells():
    frames = _world_sequence()
    low = DualRateBackgroundModel(SubtractorParams(**{**SCENARIO_PARAMS.to_dict(), "min_occupancy_probability": 50}))
    high = DualRateBackgroundModel(SubtractorParams(**{**SCENARIO_PARAMS.to_dict(), "min_occupancy_probability": 120}))
    for w in frames:
        f = w[100:220, 100:220].copy()
        m_low = low.step(f, 0, 0)
        m_high = high.step(f, 0, 0)
        assert np.count_nonzero(m_high) <= np.count_nonzero(m_low)
        assert not np.any((m_high > 0) & (m_low == 0))
    # 작업 복사본만 잘리므로 추정치는 동일
    assert np.array_equal(low.fast_estimate, high.fast_estimate)


def test_border_margin_is_always_empty():
    rng = np.random.default_rng(42)
    model = DualRateBackgroundModel(SubtractorParams(
        alpha_fast=0.9, alpha_slow=0.05, beta=0.9,
        min_occupancy_probability=10,
        min_sep_between_fast_and_slow_filter=5,
        max_occupancy_neighbors=255,
        morph_size=2,
    ))
    for i in range(12):
        frame = rng.integers(0, 256, size=(40, 50), dtype=np.uint8)
        mask = model.step(frame, int(rng.integers(-3, 4)) * i, int(rng.integers(-3, 4)))
        assert not mask[:5, :].any() and not mask[-5:, :].any()
        assert not mask[:, :5].any() and not mask[:, -5:].any()
    assert mask[5:-5, 5:-5].any()


def test_static_neighborhood_suppresses_detection():
    p = SubtractorParams(**{**SCENARIO_PARAMS.to_dict(), "max_occupancy_neighbors": 100})
    model = DualRateBackgroundModel(p)
    base = np.full((50, 50), 150, dtype=np.uint8)
    model.step(base, 0, 0)
    frame = base.copy()
    frame[20:30, 20:30] = 255
    mask = model.step(frame, 0, 0)
    # slow 이웃 평균(150) > 100 -> 전부 정적 구조물로 판단
    assert not mask.any()


# ---------------- 에러 처리 ----------------

def test_shape_mismatch_leaves_state_untouched():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    model.step(np.zeros((50, 50), dtype=np.uint8), 0, 0)
    model.step(_block_frame(), 1, 0)
    fast_before = np.array(model.fast_estimate)
    slow_before = np.array(model.slow_estimate)

    with pytest.raises(ShapeMismatchError):
        model.step(np.zeros((50, 51), dtype=np.uint8), 5, 5)

    assert model.offset == (1, 0)
    assert np.array_equal(model.fast_estimate, fast_before)
    assert np.array_equal(model.slow_estimate, slow_before)


@pytest.mark.parametrize("bad", [
    np.zeros((10, 10), dtype=np.float32),
    np.zeros((10, 10, 3), dtype=np.uint8),
    np.zeros((0, 10), dtype=np.uint8),
    [[0, 1], [2, 3]],
])
def test_malformed_frames_are_rejected(bad):
    model = DualRateBackgroundModel()
    with pytest.raises(FrameFormatError):
        model.step(bad, 0, 0)
    assert not model.initialized


def test_set_parameters_keeps_state_and_applies_next_step():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    model.step(np.zeros((50, 50), dtype=np.uint8), 0, 0)
    fast_before = np.array(model.fast_estimate)

    strict = SubtractorParams(**{**SCENARIO_PARAMS.to_dict(), "min_occupancy_probability": 250})
    model.set_parameters(strict)
    assert model.params is strict
    assert np.array_equal(model.fast_estimate, fast_before)
    assert model.offset == (0, 0)

    # 새 임계값이 적용되어 블록이 신뢰도 게이트에서 걸러짐
    assert not model.step(_block_frame(), 0, 0).any()


def test_set_parameters_rejects_non_params():
    model = DualRateBackgroundModel(SCENARIO_PARAMS)
    with pytest.raises(InvalidParametersError):
        model.set_parameters({"alpha_fast": 0.5})
    assert model.params is SCENARIO_PARAMS
