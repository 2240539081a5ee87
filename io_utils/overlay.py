# io_utils/overlay.py — occupancy grid + 전경 마스크 시각화
from __future__ import annotations

from typing import List, Optional, Tuple

import cv2
import numpy as np

from detection.foreground import Blob

_MASK_COLOR = (0, 0, 255)   # red (BGR)
_BLOB_COLOR = (0, 255, 0)   # green


def draw_overlay(
    grid_u8: np.ndarray,
    fg_mask_u8: np.ndarray,
    blobs: Optional[List[Blob]] = None,
    frame_idx: int = 0,
    flip: bool = True,
    scale: int = 1,
) -> np.ndarray:
    """grid(흑백) 위에 전경 마스크를 반투명 빨강으로, blob bbox 를 녹색으로 그림.

    costmap 좌표는 row 0 이 아래쪽이므로 flip=True 면 상하 반전해서 보여줌.
    """
    frame_bgr = cv2.cvtColor(grid_u8, cv2.COLOR_GRAY2BGR)

    mask_bool = fg_mask_u8 > 0
    if np.any(mask_bool):
        frame_bgr[mask_bool] = (
            np.array(_MASK_COLOR) * 0.5 +
            frame_bgr[mask_bool] * 0.5
        ).astype(np.uint8)

    for b in blobs or []:
        x0, y0, x1, y1 = b.bbox
        cv2.rectangle(frame_bgr, (x0, y0), (x1 - 1, y1 - 1), _BLOB_COLOR, 1)

    if flip:
        frame_bgr = cv2.flip(frame_bgr, 0)

    if scale > 1:
        H, W = frame_bgr.shape[:2]
        frame_bgr = cv2.resize(frame_bgr, (W * scale, H * scale), interpolation=cv2.INTER_NEAREST)

    # 텍스트는 반전 후에 그려야 읽힘
    cv2.putText(frame_bgr, f"frame={frame_idx}", (5, 15),
                cv2.FONT_HERSHEY_SIMPLEX, 0.4, (255, 255, 255), 1, cv2.LINE_AA)
    return frame_bgr


class OverlayWriter:
    def __init__(self, out_path: str, fps: float, frame_size: Tuple[int, int], fourcc: str = "mp4v"):
        W, H = frame_size
        self.frame_size = (int(W), int(H))
        self.writer = cv2.VideoWriter(
            out_path,
            cv2.VideoWriter_fourcc(*fourcc),
            float(fps),
            self.frame_size,
            True,
        )
        if not self.writer.isOpened():
            raise RuntimeError(f"Failed to open VideoWriter: {out_path}")

    def write(self, frame_bgr: np.ndarray) -> None:
        H, W = frame_bgr.shape[:2]
        if (W, H) != self.frame_size:
            # 크기가 다르면 VideoWriter 가 조용히 프레임을 버림
            frame_bgr = cv2.resize(frame_bgr, self.frame_size, interpolation=cv2.INTER_NEAREST)
        self.writer.write(frame_bgr)

    def close(self) -> None:
        self.writer.release()
