# detection/background_subtractor.py
"""스크롤되는 occupancy grid 위의 이중 속도(fast/slow) 배경 모델.

매 프레임:
  (a) 누적 추정치를 현재 grid 윈도우로 평행이동 (zero-fill)
  (b) fast/slow 각각 시간 EMA + 3x3 이웃 평균 블렌딩
  (c) 세 게이트 AND 로 전경 판정, 경계 5셀 제거
  (d) dilate x2 + erode x1

인스턴스는 재진입 불가. 스트림(코스트맵) 하나당 인스턴스 하나.
"""
from __future__ import annotations

from typing import Optional, Tuple

import cv2
import numpy as np

from config_params import InvalidParametersError, SubtractorParams
from detection.foreground import cleanup_mask, decide_foreground, suppress_border

NEIGHBOR_KSIZE = 3  # 3, 5, 7, ...


class ShapeMismatchError(ValueError):
    """프레임 크기가 인스턴스의 기존 grid 크기와 다름."""


class FrameFormatError(ValueError):
    """프레임이 단일 채널 2D uint8 배열이 아님."""


def shift_grid(grid_u8: np.ndarray, dx: int, dy: int) -> np.ndarray:
    """grid를 (-dx, -dy) 만큼 평행이동한 새 버퍼 반환.

    dst(x, y) = src(x + dx, y + dy). 밖에서 들어온 셀은 0 (이전 정보 없음).
    src/dst 가 겹치므로 in-place 불가.
    """
    H, W = grid_u8.shape[:2]
    if dx == 0 and dy == 0:
        return grid_u8.copy()
    M = np.float64([[1, 0, -dx], [0, 1, -dy]])
    return cv2.warpAffine(
        grid_u8, M, (W, H),
        flags=cv2.INTER_NEAREST,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )


def neighbor_mean(grid_u8: np.ndarray, ksize: int = NEIGHBOR_KSIZE) -> np.ndarray:
    return cv2.boxFilter(
        grid_u8, -1, (ksize, ksize),
        normalize=True, borderType=cv2.BORDER_REPLICATE,
    )


def blend_estimate(
    estimate_u8: np.ndarray,
    frame_u8: np.ndarray,
    mean_u8: np.ndarray,
    alpha: float,
    beta: float,
) -> np.ndarray:
    # estimate = beta*(alpha*frame + (1-alpha)*estimate) + (1-beta)*mean
    blended = cv2.addWeighted(frame_u8, alpha, estimate_u8, 1.0 - alpha, 0)
    return cv2.addWeighted(blended, beta, mean_u8, 1.0 - beta, 0)


def _readonly(a: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if a is None:
        return None
    v = a.view()
    v.flags.writeable = False
    return v


class DualRateBackgroundModel:
    """
    fast 추정치: 짧은 기억, 새 점유에 빠르게 반응
    slow 추정치: 긴 기억, 정적 구조물
    fast 가 slow 보다 충분히 앞서는 셀 = 움직이는 장애물 후보
    """

    def __init__(self, params: Optional[SubtractorParams] = None):
        self._params = params if params is not None else SubtractorParams()
        if not isinstance(self._params, SubtractorParams):
            raise InvalidParametersError(f"expected SubtractorParams, got {type(params).__name__}")

        self._fast: Optional[np.ndarray] = None  # uint8, lazy init on first frame
        self._slow: Optional[np.ndarray] = None
        self._offset: Optional[Tuple[int, int]] = None
        self._last_raw_mask: Optional[np.ndarray] = None

    # ---------------- 상태 조회 (진단용) ----------------
    @property
    def params(self) -> SubtractorParams:
        return self._params

    @property
    def initialized(self) -> bool:
        return self._fast is not None

    @property
    def shape(self) -> Optional[Tuple[int, int]]:
        if self._fast is None:
            return None
        return tuple(self._fast.shape)

    @property
    def offset(self) -> Optional[Tuple[int, int]]:
        return self._offset

    @property
    def fast_estimate(self) -> Optional[np.ndarray]:
        return _readonly(self._fast)

    @property
    def slow_estimate(self) -> Optional[np.ndarray]:
        return _readonly(self._slow)

    @property
    def last_raw_mask(self) -> Optional[np.ndarray]:
        """게이트 + 경계 제거 후, morphology 전 마스크."""
        return _readonly(self._last_raw_mask)

    # ---------------- 파라미터 ----------------
    def set_parameters(self, params: SubtractorParams) -> None:
        """파라미터 교체만 수행. 추정치/offset 은 유지, 다음 step 부터 적용."""
        if not isinstance(params, SubtractorParams):
            raise InvalidParametersError(f"expected SubtractorParams, got {type(params).__name__}")
        self._params = params

    # ---------------- 메인 ----------------
    def _check_frame(self, frame_u8: np.ndarray) -> None:
        if not isinstance(frame_u8, np.ndarray) or frame_u8.ndim != 2 or frame_u8.dtype != np.uint8:
            desc = (f"{frame_u8.dtype} {frame_u8.shape}" if isinstance(frame_u8, np.ndarray)
                    else type(frame_u8).__name__)
            raise FrameFormatError(f"frame must be a 2D uint8 array, got {desc}")
        if frame_u8.size == 0:
            raise FrameFormatError("frame is empty")
        if self._fast is not None and frame_u8.shape != self._fast.shape:
            raise ShapeMismatchError(
                f"frame shape {frame_u8.shape} != established shape {self._fast.shape}"
            )

    def step(self, frame_u8: np.ndarray, offset_x: int, offset_y: int) -> np.ndarray:
        self._check_frame(frame_u8)
        offset = (int(offset_x), int(offset_y))

        # 첫 프레임: 비교할 이력이 없으므로 빈 마스크
        if self._fast is None:
            self._fast = frame_u8.copy()
            self._slow = frame_u8.copy()
            self._offset = offset
            self._last_raw_mask = np.zeros_like(frame_u8)
            return np.zeros_like(frame_u8)

        p = self._params
        frame = np.ascontiguousarray(frame_u8)

        # (a) 이전 추정치를 현재 윈도우로 이동
        dx = offset[0] - self._offset[0]
        dy = offset[1] - self._offset[1]
        fast = shift_grid(self._fast, dx, dy)
        slow = shift_grid(self._slow, dx, dy)

        # (b) 이웃 평균은 업데이트 전 추정치 기준
        fast_mean = neighbor_mean(fast)
        slow_mean = neighbor_mean(slow)
        fast = blend_estimate(fast, frame, fast_mean, p.alpha_fast, p.beta)
        slow = blend_estimate(slow, frame, slow_mean, p.alpha_slow, p.beta)

        # (c) 전경 판정 + 경계 제거
        raw = decide_foreground(fast, slow, slow_mean, p)
        raw = suppress_border(raw)

        # (d) closing 류 후처리. dilate 로 경계 안쪽까지 자란 부분은 다시 제거
        fg = suppress_border(cleanup_mask(raw, p.morph_size))

        # 모든 계산이 끝난 뒤 상태 커밋
        self._fast = fast
        self._slow = slow
        self._offset = offset
        self._last_raw_mask = raw
        return fg
