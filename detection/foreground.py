# detection/foreground.py — 전경 판정 / 경계 제거 / morphology / blob 추출
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import cv2
import numpy as np

from config_params import SubtractorParams

BORDER_MARGIN = 5  # 경계 셀은 재정렬 zero-fill 과 센서 FOV 때문에 신뢰 불가


@dataclass
class Blob:
    cx: float
    cy: float
    bbox: Tuple[int, int, int, int]  # x0,y0,x1,y1
    area: int


def decide_foreground(
    fast_u8: np.ndarray,
    slow_u8: np.ndarray,
    slow_mean_u8: np.ndarray,
    params: SubtractorParams,
) -> np.ndarray:
    """세 게이트의 AND로 raw 전경 마스크(0/255) 계산.

    1) confidence: fast > min_occupancy_probability (작업 복사본만 0으로)
    2) motion:     fast - slow > min_sep_between_fast_and_slow_filter
    3) static:     slow 이웃 평균 <= max_occupancy_neighbors
    """
    # 1) cv2.threshold는 새 버퍼를 반환 -> fast 원본은 그대로
    _, fast_work = cv2.threshold(
        fast_u8, float(params.min_occupancy_probability), 0, cv2.THRESH_TOZERO
    )

    # 2) uint8 포화 뺄셈 (음수 -> 0)
    sep = cv2.subtract(fast_work, slow_u8)
    _, fg = cv2.threshold(
        sep, float(params.min_sep_between_fast_and_slow_filter), 255, cv2.THRESH_BINARY
    )

    # 3) 오래 점유된 이웃 안의 셀은 정적 구조물로 보고 제거
    _, not_static = cv2.threshold(
        slow_mean_u8, float(params.max_occupancy_neighbors), 255, cv2.THRESH_BINARY_INV
    )
    return cv2.bitwise_and(fg, not_static)


def suppress_border(mask_u8: np.ndarray, margin: int = BORDER_MARGIN) -> np.ndarray:
    H, W = mask_u8.shape[:2]
    keep = np.zeros((H, W), dtype=np.uint8)
    if H > 2 * margin and W > 2 * margin:
        keep[margin:H - margin, margin:W - margin] = 255
    return cv2.bitwise_and(mask_u8, keep)


def structuring_element(morph_size: int) -> np.ndarray:
    d = 2 * int(morph_size) + 1
    return cv2.getStructuringElement(
        cv2.MORPH_ELLIPSE, (d, d), (int(morph_size), int(morph_size))
    )


def cleanup_mask(mask_u8: np.ndarray, morph_size: int) -> np.ndarray:
    """dilate 2회 + erode 1회 (성장 쪽으로 치우친 closing).

    조각난 검출을 하나의 blob으로 합침. morph_size=0 이면 1x1 커널 -> 그대로.
    """
    k = structuring_element(morph_size)
    out = cv2.dilate(mask_u8, k)
    out = cv2.dilate(out, k)
    return cv2.erode(out, k)


def extract_blobs(mask_u8: np.ndarray, min_area: int = 0, max_area: int = 0) -> List[Blob]:
    """최종 마스크의 connected component -> Blob 리스트. max_area <= 0 이면 상한 없음."""
    binary = (mask_u8 > 0).astype(np.uint8)
    n, _, stats, centroids = cv2.connectedComponentsWithStats(binary, connectivity=8)

    blobs: List[Blob] = []
    for label_id in range(1, n):  # skip background (0)
        x = int(stats[label_id, cv2.CC_STAT_LEFT])
        y = int(stats[label_id, cv2.CC_STAT_TOP])
        w = int(stats[label_id, cv2.CC_STAT_WIDTH])
        h = int(stats[label_id, cv2.CC_STAT_HEIGHT])
        area = int(stats[label_id, cv2.CC_STAT_AREA])
        if area < min_area or (max_area > 0 and area > max_area):
            continue

        cx, cy = centroids[label_id]
        blobs.append(
            Blob(
                cx=float(cx),
                cy=float(cy),
                bbox=(x, y, x + w, y + h),
                area=area,
            )
        )

    return blobs
