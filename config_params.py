# config_params.py — 배경 차분 파라미터 관리
from __future__ import annotations

import numbers
from dataclasses import dataclass, fields
from typing import Any, Dict

import yaml


class InvalidParametersError(ValueError):
    """파라미터 값이 허용 범위를 벗어남."""


def load_yaml(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge(a: dict, b: dict) -> dict:
    """merge b into a (recursive), return new dict"""
    out = dict(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass(frozen=True)
class SubtractorParams:
    """불변 파라미터 레코드. 생성 시 검증, 이후 변경 불가 (교체만 가능)."""

    # --- 시간 필터 (EMA 학습률) ---
    alpha_fast: float = 0.85    # 빠른 필터: 새 점유에 빠르게 반응
    alpha_slow: float = 0.3     # 느린 필터: 정적 구조물
    beta: float = 0.85          # temporal vs 3x3 이웃 평균 가중치

    # --- 전경 판정 임계값 (0..255) ---
    min_occupancy_probability: int = 180
    min_sep_between_fast_and_slow_filter: int = 80
    max_occupancy_neighbors: int = 80

    # --- 후처리 ---
    morph_size: int = 1         # 타원 커널 반경 (지름 = 2*morph_size+1)

    def __post_init__(self) -> None:
        for name in ("alpha_fast", "alpha_slow", "beta"):
            v = getattr(self, name)
            if not isinstance(v, numbers.Real) or isinstance(v, bool) or not (0.0 < float(v) < 1.0):
                raise InvalidParametersError(f"{name} must be in (0, 1), got {v!r}")
        for name in ("min_occupancy_probability",
                     "min_sep_between_fast_and_slow_filter",
                     "max_occupancy_neighbors"):
            v = getattr(self, name)
            if not isinstance(v, numbers.Real) or isinstance(v, bool) or not (0 <= v <= 255):
                raise InvalidParametersError(f"{name} must be in [0, 255], got {v!r}")
        m = self.morph_size
        if not isinstance(m, numbers.Integral) or isinstance(m, bool) or m < 0:
            raise InvalidParametersError(f"morph_size must be a non-negative int, got {m!r}")

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "SubtractorParams":
        """config.yaml의 subtractor 섹션에서 생성. 없는 키는 기본값, 모르는 키는 에러."""
        s = cfg.get("subtractor", {})
        if s is None:
            s = {}
        if not isinstance(s, dict):
            raise InvalidParametersError(f"subtractor section must be a mapping, got {type(s).__name__}")
        valid_fields = {f.name for f in fields(cls)}
        unknown = sorted(set(s) - valid_fields)
        if unknown:
            raise InvalidParametersError(f"unknown subtractor options: {', '.join(unknown)}")
        kwargs: Dict[str, Any] = {}
        for k, v in s.items():
            if k == "morph_size" and isinstance(v, float) and v.is_integer():
                v = int(v)
            kwargs[k] = v
        instance = cls(**kwargs)
        instance._warn_rates()
        return instance

    def _warn_rates(self) -> None:
        """학습률 설정이 의도와 어긋날 때 경고 출력."""
        if self.alpha_fast <= self.alpha_slow:
            print(f"[WARN] alpha_fast({self.alpha_fast}) <= alpha_slow({self.alpha_slow}): "
                  "빠른 필터가 느린 필터보다 늦게 반응함")

    def to_dict(self) -> Dict[str, Any]:
        """전체 파라미터를 딕셔너리로 반환 (로깅용)."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def summary(self) -> str:
        lines = [f"  {f.name} = {getattr(self, f.name)}" for f in fields(self)]
        return "Subtractor Params:\n" + "\n".join(lines)
