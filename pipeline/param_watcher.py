# pipeline/param_watcher.py — 실행 중 파라미터 파일 변경 감지
from __future__ import annotations

import os
from typing import Optional

import yaml

from config_params import InvalidParametersError, SubtractorParams, deep_merge, load_yaml


class ParamWatcher:
    """
    params.yaml 의 mtime 이 바뀌면 subtractor 섹션을 다시 읽어 새 파라미터 생성.
    파일에 없는 키는 현재 값을 유지. 잘못된 값이면 InvalidParametersError.

    params.yaml 예시:

    subtractor:
      alpha_fast: 0.9
      min_occupancy_probability: 150
    """

    def __init__(self, path: str):
        self.path = path
        self._mtime: Optional[float] = None

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.stat(self.path).st_mtime
        except FileNotFoundError:
            return None

    def poll(self, current: SubtractorParams) -> Optional[SubtractorParams]:
        """변경 없으면 None, 변경됐으면 새 SubtractorParams."""
        mtime = self._current_mtime()
        if mtime is None or mtime == self._mtime:
            return None
        self._mtime = mtime

        try:
            data = load_yaml(self.path)
        except yaml.YAMLError as e:
            raise InvalidParametersError(f"failed to parse {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise InvalidParametersError(f"{self.path}: top level must be a mapping")
        section = data.get("subtractor", {}) or {}
        if not isinstance(section, dict):
            raise InvalidParametersError(f"{self.path}: subtractor section must be a mapping")
        merged = deep_merge(current.to_dict(), section)
        return SubtractorParams.from_config({"subtractor": merged})
