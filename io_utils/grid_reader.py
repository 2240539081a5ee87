# io_utils/grid_reader.py — occupancy frame + 정렬 offset 공급원
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import cv2
import numpy as np


@dataclass
class GridFrame:
    index: int
    grid: np.ndarray   # uint8 (H, W)
    offset_x: int
    offset_y: int


def _load_offsets_csv(path: Path) -> Dict[str, Tuple[int, int]]:
    """offsets.csv: frame,offset_x,offset_y (frame = 파일명 또는 인덱스)."""
    out: Dict[str, Tuple[int, int]] = {}
    with open(path, "r", newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            out[str(row["frame"]).strip()] = (int(row["offset_x"]), int(row["offset_y"]))
    return out


class GridReader:
    """
    지원 입력:
      - .npz : frames (N,H,W) uint8, offsets (N,2) int (없으면 0)
      - 디렉토리 : 그레이스케일 이미지 + (선택) offsets.csv
    """

    def __init__(self, path: str):
        self.path = Path(path)

        self._frames: Optional[np.ndarray] = None
        self._offsets: Optional[np.ndarray] = None
        self._images: Optional[List[Path]] = None
        self._image_offsets: Dict[str, Tuple[int, int]] = {}
        self._idx = 0

        if self.path.is_dir():
            exts = {".png", ".bmp", ".pgm", ".tif", ".tiff"}
            imgs = [p for p in sorted(self.path.iterdir()) if p.suffix.lower() in exts]
            if not imgs:
                raise FileNotFoundError(f"No grid images in folder: {self.path}")
            self._images = imgs
            first = cv2.imread(str(imgs[0]), cv2.IMREAD_GRAYSCALE)
            if first is None:
                raise RuntimeError(f"Failed to read first image: {imgs[0]}")
            self._height, self._width = first.shape[:2]

            off_path = self.path / "offsets.csv"
            if off_path.exists():
                self._image_offsets = _load_offsets_csv(off_path)
            else:
                print(f"[WARN] {off_path} not found -> all offsets (0, 0)")
            self._count = len(imgs)
        elif self.path.suffix.lower() == ".npz":
            if not self.path.exists():
                raise FileNotFoundError(f"No such archive: {self.path}")
            with np.load(str(self.path)) as data:
                if "frames" not in data:
                    raise RuntimeError(f"'frames' array missing in {self.path}")
                frames = np.asarray(data["frames"])
                offsets = np.asarray(data["offsets"]) if "offsets" in data else None
            if frames.dtype != np.uint8:
                raise RuntimeError(f"'frames' must be uint8, got {frames.dtype}")
            if frames.ndim != 3:
                raise RuntimeError(f"'frames' must be (N,H,W), got {frames.shape}")
            if offsets is None:
                print(f"[WARN] 'offsets' missing in {self.path} -> all offsets (0, 0)")
                offsets = np.zeros((frames.shape[0], 2), dtype=np.int64)
            if offsets.shape != (frames.shape[0], 2):
                raise RuntimeError(f"'offsets' must be (N,2), got {offsets.shape}")
            self._frames = frames
            self._offsets = offsets.astype(np.int64)
            self._height, self._width = frames.shape[1:3]
            self._count = int(frames.shape[0])
        else:
            raise FileNotFoundError(f"Unsupported grid source: {self.path}")

    @property
    def width(self) -> int:
        return int(self._width)

    @property
    def height(self) -> int:
        return int(self._height)

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[GridFrame]:
        return self

    def __next__(self) -> GridFrame:
        if self._idx >= self._count:
            raise StopIteration
        i = self._idx
        self._idx += 1

        if self._frames is not None:
            assert self._offsets is not None
            ox, oy = self._offsets[i]
            return GridFrame(index=i, grid=self._frames[i], offset_x=int(ox), offset_y=int(oy))

        assert self._images is not None
        p = self._images[i]
        grid = cv2.imread(str(p), cv2.IMREAD_GRAYSCALE)
        if grid is None:
            raise RuntimeError(f"Failed to read image: {p}")
        # 파일명 -> 확장자 없는 이름 -> 인덱스 순으로 조회
        off = (self._image_offsets.get(p.name)
               or self._image_offsets.get(p.stem)
               or self._image_offsets.get(str(i))
               or (0, 0))
        return GridFrame(index=i, grid=grid, offset_x=int(off[0]), offset_y=int(off[1]))
