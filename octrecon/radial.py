"""
径向(极坐标)图像模块
将矩形B-scan (深度×角度) 重映射为圆形截面图像
"""

import numpy as np

from .errors import DimensionMismatch
from .image_utils import inverse_polar_warp, pad_top


def to_radial(image: np.ndarray, top_padding: int = 0) -> np.ndarray:
    """
    生成径向图像

    上方补top_padding行0(扫描中心到首个深度采样点的物理偏移)，转置后
    行为角度、列为半径，再做逆线性极坐标变换。输出为 2d×2d，d = min(image.shape)，
    圆心在 (d, d)，最大半径为d。

    Args:
        image: uint8 B-scan [depth×nLines]
        top_padding: 补零行数

    Returns:
        radial: uint8径向图像 [2d×2d]
    """
    if image.ndim != 2 or image.shape[0] == 0 or image.shape[1] == 0:
        raise DimensionMismatch(f"径向投影需要非空二维图像: {image.shape}")

    dim = min(image.shape)
    padded = pad_top(image, top_padding)
    polar = np.ascontiguousarray(padded.T)
    return inverse_polar_warp(polar, 2 * dim, dim)
