# io_utils/artifacts.py
from __future__ import annotations

import json
import csv
from pathlib import Path
from typing import Any, Dict, List, Optional

from detection.foreground import Blob


_FRAME_FIELDS = [
    "frame_idx",
    "offset_x",
    "offset_y",
    "shift_dx",
    "shift_dy",
    "fg_pixels",
    "fg_ratio",
    "n_blobs",
    "status",
]

_BLOB_FIELDS = [
    "frame_idx",
    "blob_idx",
    "center_x",
    "center_y",
    "bbox_x0",
    "bbox_y0",
    "bbox_x1",
    "bbox_y1",
    "area",
]


class ArtifactWriter:
    """foreground.csv (프레임당 1행) + blobs.csv (blob당 1행)."""

    def __init__(self, out_dir: Path, save_csv: bool = True):
        self.out_dir = out_dir
        self.save_csv = bool(save_csv)

        self._frame_f = None
        self._blob_f = None
        self._frame_writer = None
        self._blob_writer = None

        if self.save_csv:
            self._frame_f = open(out_dir / "foreground.csv", "w", newline="", encoding="utf-8")
            self._frame_writer = csv.DictWriter(self._frame_f, fieldnames=_FRAME_FIELDS)
            self._frame_writer.writeheader()
            self._blob_f = open(out_dir / "blobs.csv", "w", newline="", encoding="utf-8")
            self._blob_writer = csv.DictWriter(self._blob_f, fieldnames=_BLOB_FIELDS)
            self._blob_writer.writeheader()

    def write_frame(self, frame_idx: int, offset: tuple, shift: tuple,
                    fg_pixels: int, n_cells: int, blobs: List[Blob],
                    status: str = "ok") -> None:
        if self._frame_writer is None:
            return

        self._frame_writer.writerow({
            "frame_idx": frame_idx,
            "offset_x": offset[0],
            "offset_y": offset[1],
            "shift_dx": shift[0],
            "shift_dy": shift[1],
            "fg_pixels": fg_pixels,
            "fg_ratio": f"{fg_pixels / max(1, n_cells):.5f}",
            "n_blobs": len(blobs),
            "status": status,
        })

        for i, b in enumerate(blobs):
            bx0, by0, bx1, by1 = b.bbox
            self._blob_writer.writerow({
                "frame_idx": frame_idx,
                "blob_idx": i,
                "center_x": f"{b.cx:.3f}",
                "center_y": f"{b.cy:.3f}",
                "bbox_x0": bx0,
                "bbox_y0": by0,
                "bbox_x1": bx1,
                "bbox_y1": by1,
                "area": b.area,
            })

    def close(self) -> None:
        for f in (self._frame_f, self._blob_f):
            if f is not None:
                f.close()
        self._frame_f = self._blob_f = None
        self._frame_writer = self._blob_writer = None


class EventWriter:
    """events.jsonl: 프레임 스킵, 파라미터 교체/거부 등 이벤트 로그."""

    def __init__(self, path: Path):
        self._f = open(path, "w", encoding="utf-8")

    def log(self, frame_idx: int, event_type: str,
            details: Optional[Dict[str, Any]] = None) -> None:
        record = {
            "frame": frame_idx,
            "event": event_type,
            "details": details or {},
        }
        self._f.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._f.flush()

    def close(self) -> None:
        self._f.close()
