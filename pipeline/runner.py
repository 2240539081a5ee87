# pipeline/runner.py — occupancy grid 스트림 -> 움직이는 장애물 전경 마스크
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from config_params import InvalidParametersError, SubtractorParams
from detection.background_subtractor import (
    DualRateBackgroundModel,
    FrameFormatError,
    ShapeMismatchError,
)
from detection.foreground import extract_blobs
from io_utils.artifacts import ArtifactWriter, EventWriter
from io_utils.grid_reader import GridReader
from io_utils.history_dump import HistoryDump
from io_utils.overlay import OverlayWriter, draw_overlay
from pipeline.param_watcher import ParamWatcher


def run_pipeline(
    cfg: Dict[str, Any],
    input_path: str,
    output_dir: str,
    params_path: str = "",
) -> Dict[str, int]:
    """프레임을 순서대로 모델에 넣고 산출물 기록. 처리/스킵 프레임 수 반환."""
    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    # --- 파라미터 ---
    params = SubtractorParams.from_config(cfg)
    print(params.summary())
    model = DualRateBackgroundModel(params)

    watcher: Optional[ParamWatcher] = ParamWatcher(params_path) if params_path else None

    # --- 입력 ---
    reader = GridReader(input_path)
    W, H = reader.width, reader.height
    print(f"[INIT] {len(reader)} frames, grid {W}x{H}")

    # --- 출력 ---
    project = cfg.get("project", {})
    artifacts = ArtifactWriter(out_dir, save_csv=project.get("save_csv", True))
    event_writer: Optional[EventWriter] = None
    if project.get("save_events", True):
        event_writer = EventWriter(out_dir / "events.jsonl")

    history: Optional[HistoryDump] = None
    hcfg = cfg.get("history", {})
    if hcfg.get("enabled", False):
        history = HistoryDump(str(out_dir), every_n=int(hcfg.get("every_n", 10)))

    vcfg = cfg.get("video", {})
    overlay_writer: Optional[OverlayWriter] = None
    scale = max(1, int(vcfg.get("scale", 4)))
    flip = bool(vcfg.get("flip", True))
    if project.get("save_overlay_video", False):
        overlay_writer = OverlayWriter(
            str(out_dir / "overlay.mp4"),
            fps=float(vcfg.get("fps", 10.0)),
            frame_size=(W * scale, H * scale),
            fourcc=vcfg.get("overlay_fourcc", "mp4v"),
        )

    bcfg = cfg.get("blobs", {})
    min_area = int(bcfg.get("min_area", 0))
    max_area = int(bcfg.get("max_area", 0))

    def log_event(frame_idx: int, event: str, details: Dict[str, Any]) -> None:
        if event_writer is not None:
            event_writer.log(frame_idx, event, details)

    n_done = 0
    n_skipped = 0
    try:
        for gf in reader:
            # --- 파라미터 교체 (다음 step 부터 적용) ---
            if watcher is not None:
                try:
                    new_params = watcher.poll(model.params)
                except InvalidParametersError as e:
                    print(f"[WARN] params rejected, keeping previous: {e}")
                    log_event(gf.index, "PARAMS_REJECTED", {"error": str(e)})
                    new_params = None
                if new_params is not None and new_params != model.params:
                    model.set_parameters(new_params)
                    print(f"[PARAMS] frame={gf.index} updated")
                    log_event(gf.index, "PARAMS_UPDATED", new_params.to_dict())

            prev_offset = model.offset
            try:
                fg = model.step(gf.grid, gf.offset_x, gf.offset_y)
            except (ShapeMismatchError, FrameFormatError) as e:
                # 상태는 그대로 -> 다음 프레임 계속
                n_skipped += 1
                print(f"[SKIP] frame={gf.index}: {e}")
                log_event(gf.index, "FRAME_SKIPPED", {"error": str(e)})
                artifacts.write_frame(gf.index, (gf.offset_x, gf.offset_y), (0, 0),
                                      0, gf.grid.size, [], status="skipped")
                continue

            n_done += 1
            shift = (0, 0)
            if prev_offset is not None:
                shift = (gf.offset_x - prev_offset[0], gf.offset_y - prev_offset[1])

            blobs = extract_blobs(fg, min_area=min_area, max_area=max_area)
            artifacts.write_frame(gf.index, (gf.offset_x, gf.offset_y), shift,
                                  int(np.count_nonzero(fg)), fg.size, blobs)

            if history is not None:
                history.record(gf.grid, model.fast_estimate, model.slow_estimate,
                               model.last_raw_mask)

            if overlay_writer is not None:
                overlay_writer.write(draw_overlay(gf.grid, fg, blobs, gf.index,
                                                  flip=flip, scale=scale))
    finally:
        artifacts.close()
        if event_writer is not None:
            event_writer.close()
        if history is not None:
            history.flush()
        if overlay_writer is not None:
            overlay_writer.close()

    print(f"[DONE] processed={n_done} skipped={n_skipped} -> {out_dir}")
    return {"processed": n_done, "skipped": n_skipped}
