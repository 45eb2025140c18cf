"""
图像处理工具模块
包含相位相关位移估计、面积插值缩放、逆极坐标变换等基础图像操作
"""

import numpy as np
from typing import Tuple

import cv2

from .errors import DimensionMismatch


def _as_float32(img: np.ndarray) -> np.ndarray:
    """cv2.phaseCorrelate只接受CV_32F/CV_64F单通道连续数组"""
    return np.ascontiguousarray(img, dtype=np.float32)


def phase_correlate(ref: np.ndarray, moving: np.ndarray) -> Tuple[float, float]:
    """
    相位相关估计亚像素位移

    返回 (dx, dy)，满足 moving(x, y) ≈ ref(x - dx, y - dy)。
    任一输入为常数图像(无可用相关信息)时返回 (0, 0)。

    Args:
        ref: 参考图像 [H×W]
        moving: 待配准图像 [H×W]

    Returns:
        (dx, dy): 水平与垂直位移
    """
    if ref.shape != moving.shape:
        raise DimensionMismatch(f"相位相关输入尺寸不一致: {ref.shape} vs {moving.shape}")
    if ref.ndim != 2 or ref.size == 0:
        raise DimensionMismatch(f"相位相关需要非空二维图像: {ref.shape}")

    if np.ptp(ref) == 0 or np.ptp(moving) == 0:
        return 0.0, 0.0

    (dx, dy), _response = cv2.phaseCorrelate(_as_float32(ref), _as_float32(moving))
    if not (np.isfinite(dx) and np.isfinite(dy)):
        return 0.0, 0.0
    return float(dx), float(dy)


def phase_correlate_shift(ref: np.ndarray, moving: np.ndarray) -> int:
    """相位相关估计的水平位移，四舍五入到整数像素 (.5远离0取整)"""
    dx, _ = phase_correlate(ref, moving)
    return int(np.sign(dx) * np.floor(abs(dx) + 0.5))


def resize_area(img: np.ndarray, width: int, height: int = None) -> np.ndarray:
    """
    面积插值(INTER_AREA)缩放

    Args:
        img: 输入图像 [H×W]
        width: 目标宽度
        height: 目标高度，默认保持不变

    Returns:
        缩放后的图像 [height×width]
    """
    if height is None:
        height = img.shape[0]
    if width <= 0 or height <= 0 or img.size == 0:
        raise DimensionMismatch(f"缩放尺寸非法: {img.shape} -> ({height}, {width})")
    if img.shape[:2] == (height, width):
        return img.copy()
    return cv2.resize(np.ascontiguousarray(img), (width, height), interpolation=cv2.INTER_AREA)


def circshift_columns(img: np.ndarray, shift: int) -> np.ndarray:
    """
    列循环左移: out[:, j] = img[:, (j + shift) % W]

    Args:
        img: 输入图像 [H×W]
        shift: 左移列数 (可为负)

    Returns:
        移位后的图像
    """
    if img.shape[1] == 0:
        return img.copy()
    return np.roll(img, -shift, axis=1)


def pad_top(img: np.ndarray, rows: int) -> np.ndarray:
    """在图像上方补rows行0"""
    if rows < 0:
        raise DimensionMismatch(f"补零行数不能为负: {rows}")
    if rows == 0:
        return img
    return cv2.copyMakeBorder(np.ascontiguousarray(img), rows, 0, 0, 0, cv2.BORDER_CONSTANT, value=0)


def inverse_polar_warp(polar: np.ndarray, size: int, radius: float) -> np.ndarray:
    """
    逆线性极坐标变换

    Args:
        polar: 极坐标图像，行为角度、列为半径 [nTheta×nR]
        size: 输出方形图像边长
        radius: 最大半径 (像素)，对应polar的最后一列

    Returns:
        笛卡尔图像 [size×size]，圆心位于 (radius, radius)
    """
    if polar.size == 0 or size <= 0 or radius <= 0:
        raise DimensionMismatch(f"极坐标变换输入非法: {polar.shape}, size={size}, radius={radius}")
    center = (float(radius), float(radius))
    flags = cv2.WARP_FILL_OUTLIERS + cv2.WARP_INVERSE_MAP + cv2.WARP_POLAR_LINEAR + cv2.INTER_LINEAR
    return cv2.warpPolar(np.ascontiguousarray(polar), (size, size), center, float(radius), flags)

