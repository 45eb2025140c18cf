"""
GPU加速工具模块
提供GPU/CPU自动切换功能，使用CuPy进行GPU加速
"""

import numpy as np
from typing import Union
import warnings

# 尝试导入CuPy
try:
    import cupy as cp
    GPU_AVAILABLE = True
except ImportError:
    GPU_AVAILABLE = False
    cp = None
    warnings.warn("CuPy未安装，将使用CPU计算。安装方法: pip install cupy-cuda12x")


def get_array_module(arr):
    """
    获取数组对应的计算模块(numpy或cupy)

    Args:
        arr: 输入数组

    Returns:
        对应的计算模块
    """
    if GPU_AVAILABLE and isinstance(arr, cp.ndarray):
        return cp
    return np


def is_gpu_array(arr) -> bool:
    """判断数组是否位于GPU"""
    return GPU_AVAILABLE and isinstance(arr, cp.ndarray)


def to_gpu(arr: np.ndarray) -> Union[np.ndarray, 'cp.ndarray']:
    """
    将numpy数组转移到GPU

    Args:
        arr: numpy数组

    Returns:
        GPU数组(如果GPU可用)或原数组
    """
    if GPU_AVAILABLE and isinstance(arr, np.ndarray):
        return cp.asarray(arr)
    return arr


def to_cpu(arr) -> np.ndarray:
    """
    将GPU数组转移到CPU

    Args:
        arr: GPU数组或numpy数组

    Returns:
        numpy数组
    """
    if GPU_AVAILABLE and isinstance(arr, cp.ndarray):
        return cp.asnumpy(arr)
    return arr


def hamming_window(M: int, dtype=np.float64) -> np.ndarray:
    """
    生成周期Hamming窗: 0.54 - 0.46·cos(2πi/M)

    注意与np.hamming不同，分母为M而不是M-1

    Args:
        M: 窗口长度
        dtype: 输出数据类型

    Returns:
        窗口数组 [M,]
    """
    if M <= 0:
        return np.zeros(0, dtype=dtype)
    n = np.arange(M, dtype=np.float64)
    window = 0.54 - 0.46 * np.cos(2 * np.pi * n / M)
    return window.astype(dtype)
