# io_utils/history_dump.py
"""진단용 이력 덤프 — N 프레임마다 frame/fast/slow/mask 를 YAML로 저장.

모델은 이 모듈을 모름. runner 가 step 후 record() 호출.
"""
from __future__ import annotations

import os
from typing import Dict, List

import cv2
import numpy as np

# key -> 파일명(확장자 제외)
_STREAMS = {
    "frame": "current_frames",
    "fast": "occupancy_fast",
    "slow": "occupancy_slow",
    "mask": "fg_mask",
}


def write_mats_yaml(path: str, mats: List[np.ndarray]) -> None:
    """OpenCV FileStorage 로 mat 시퀀스를 'frames' 노드에 기록."""
    fs = cv2.FileStorage(path, cv2.FILE_STORAGE_WRITE)
    if not fs.isOpened():
        raise RuntimeError(f"Failed to open FileStorage: {path}")
    try:
        fs.startWriteStruct("frames", cv2.FileNode_SEQ)
        for m in mats:
            fs.write("", np.ascontiguousarray(m))
        fs.endWriteStruct()
    finally:
        fs.release()


class HistoryDump:
    def __init__(self, output_dir: str, every_n: int = 10):
        if int(every_n) <= 0:
            raise ValueError(f"every_n must be > 0, got {every_n}")
        self.output_dir = os.path.join(output_dir, "history")
        self.every_n = int(every_n)
        self.chunk_idx = 0
        self._buf: Dict[str, List[np.ndarray]] = {k: [] for k in _STREAMS}
        os.makedirs(self.output_dir, exist_ok=True)

    def __len__(self) -> int:
        return len(self._buf["frame"])

    def record(self, frame: np.ndarray, fast: np.ndarray,
               slow: np.ndarray, mask: np.ndarray) -> None:
        # 모델 내부 버퍼가 다음 step 에서 교체되므로 복사본 보관
        self._buf["frame"].append(np.array(frame, copy=True))
        self._buf["fast"].append(np.array(fast, copy=True))
        self._buf["slow"].append(np.array(slow, copy=True))
        self._buf["mask"].append(np.array(mask, copy=True))
        if len(self) >= self.every_n:
            self.flush()

    def flush(self) -> None:
        """버퍼 내용을 chunk_XXXX/ 에 기록하고 비움. 비어 있으면 아무것도 안 함."""
        if len(self) == 0:
            return
        chunk_dir = os.path.join(self.output_dir, f"chunk_{self.chunk_idx:04d}")
        os.makedirs(chunk_dir, exist_ok=True)
        for key, name in _STREAMS.items():
            write_mats_yaml(os.path.join(chunk_dir, f"{name}.yml"), self._buf[key])
            self._buf[key] = []
        self.chunk_idx += 1
