"""
A-line重建模块
单条干涉信号 -> 背景扣除 -> 波数线性化 -> 加窗 -> FFT -> 对数压缩

所有函数均沿最后一维处理，既可处理单条A-line [N,]，也可处理A-line块 [m×N]
"""

import threading
from typing import Optional

import numpy as np

from .calibration import Calibration
from .errors import DimensionMismatch
from .gpu_utils import get_array_module, hamming_window, to_gpu
from .spectral_transform import RealFFTPlan, SpectralTransformEngine


def subtract_background(raw, background, out=None):
    """
    背景扣除: corrected[i] = raw[i] - background[i]

    Args:
        raw: 原始干涉信号 [..., N]
        background: 背景光谱 [N,]
        out: 可选输出缓冲区 (浮点)

    Returns:
        corrected: 扣除背景后的信号 [..., N]
    """
    xp = get_array_module(raw)
    if out is None:
        out = xp.empty(raw.shape, dtype=xp.float64)
    return xp.subtract(raw, background, out=out)


def linearize_wavenumber(corrected, calib: Calibration, out=None, tmp=None):
    """
    波数线性化: 按标定系数将非均匀波数采样分段线性重采样到均匀网格

        linear[i] = corrected[u]·left[i] + corrected[u+1]·right[i],  u = index[i]

    只对 i ∈ [0, N-1) 定义；最后一个采样点复制前一个点的值。

    Args:
        corrected: 扣除背景后的信号 [..., N]
        calib: 标定数据
        out: 可选输出缓冲区 [..., N]
        tmp: 可选临时缓冲区 [..., N-1]

    Returns:
        linear: 线性波数信号 [..., N]
    """
    n = corrected.shape[-1]
    if n != calib.aline_size:
        raise DimensionMismatch(f"A-line长度 {n} 与标定长度 {calib.aline_size} 不一致")

    xp = get_array_module(corrected)
    idx = calib.index[:n - 1]
    left = calib.left_coeff[:n - 1]
    right = calib.right_coeff[:n - 1]
    if xp is not np:
        idx, left, right = to_gpu(np.asarray(idx)), to_gpu(np.asarray(left)), to_gpu(np.asarray(right))

    if out is None:
        out = xp.empty(corrected.shape, dtype=xp.float64)
    if tmp is None:
        tmp = xp.empty(corrected.shape[:-1] + (n - 1,), dtype=xp.float64)

    head = out[..., :n - 1]
    xp.multiply(xp.take(corrected, idx, axis=-1), left, out=head)
    xp.multiply(xp.take(corrected, idx + 1, axis=-1), right, out=tmp)
    head += tmp
    out[..., n - 1] = out[..., n - 2]
    return out


def apodize(linear, window, out=None):
    """加窗: windowed[i] = linear[i]·window[i]"""
    xp = get_array_module(linear)
    return xp.multiply(linear, window, out=out)


def log_compress(spectrum, contrast: float, brightness: float, out=None):
    """
    对数压缩到8位灰度

        val = contrast·(10·log10(re² + im²) + brightness), 截断到[0, 255]

    功率为0的频点按 -inf 处理，输出0；不产生浮点警告。

    Args:
        spectrum: 复数频谱 [..., depth]
        contrast: 对比度
        brightness: 亮度 (dB)
        out: 可选uint8输出缓冲区

    Returns:
        8位强度 [..., depth]
    """
    xp = get_array_module(spectrum)
    power = spectrum.real * spectrum.real + spectrum.imag * spectrum.imag

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        val = contrast * (10 * xp.log10(power) + brightness)
    val[power == 0] = 0
    val[xp.isnan(val)] = 0
    xp.clip(val, 0, 255, out=val)

    if out is None:
        return val.astype(xp.uint8)
    out[...] = val
    return out


class ALineScratch:
    """单个worker私有的中间缓冲区，按需扩容"""

    def __init__(self, aline_size: int, n_bins: int, rows: int = 1, xp=np):
        self.aline_size = aline_size
        self.n_bins = n_bins
        self.xp = xp
        self._allocate(rows)

    def _allocate(self, rows: int):
        xp = self.xp
        self.rows = rows
        self.corrected = xp.empty((rows, self.aline_size), dtype=xp.float64)
        self.linear = xp.empty((rows, self.aline_size), dtype=xp.float64)
        self.tmp = xp.empty((rows, self.aline_size - 1), dtype=xp.float64)
        self.spectrum = xp.empty((rows, self.n_bins), dtype=xp.complex128)

    def views(self, rows: int):
        if rows > self.rows:
            self._allocate(rows)
        return self.corrected[:rows], self.linear[:rows], self.tmp[:rows], self.spectrum[:rows]


class ALineReconstructor:
    """
    A-line重建器

    保存标定、窗函数和FFT计划的只读引用；每个线程通过thread-local
    持有自己的ALineScratch，因此同一个实例可被多个worker同时使用。
    """

    def __init__(
        self,
        calib: Calibration,
        window: np.ndarray,
        plan: RealFFTPlan,
        contrast: float,
        brightness: float,
        output_depth: int
    ):
        n = calib.aline_size
        if window.shape != (n,):
            raise DimensionMismatch(f"窗函数长度 {window.shape} 与A-line长度 {n} 不一致")
        if plan.length != n:
            raise DimensionMismatch(f"FFT计划长度 {plan.length} 与A-line长度 {n} 不一致")
        if not 0 < output_depth <= plan.n_bins:
            raise DimensionMismatch(f"输出深度 {output_depth} 超出范围 (0, {plan.n_bins}]")

        self.calib = calib
        self.window = window
        self.plan = plan
        self.contrast = contrast
        self.brightness = brightness
        self.output_depth = output_depth
        self._local = threading.local()

    @property
    def aline_size(self) -> int:
        return self.calib.aline_size

    def _scratch(self, rows: int, xp=np) -> ALineScratch:
        scratch = getattr(self._local, 'scratch', None)
        if scratch is None or scratch.xp is not xp:
            scratch = ALineScratch(self.aline_size, self.plan.n_bins, rows, xp=xp)
            self._local.scratch = scratch
        return scratch

    def reconstruct_block(self, raw, out=None):
        """
        重建一组A-line

        Args:
            raw: 原始干涉信号 [m×N]
            out: 可选uint8输出 [m×depth]

        Returns:
            8位强度 [m×depth]
        """
        if raw.ndim != 2 or raw.shape[1] != self.aline_size:
            raise DimensionMismatch(f"A-line块形状 {raw.shape} 与A-line长度 {self.aline_size} 不匹配")

        xp = get_array_module(raw)
        m = raw.shape[0]
        corrected, linear, tmp, spectrum = self._scratch(m, xp).views(m)

        window = self.window
        background = self.calib.background
        if xp is not np:
            window, background = to_gpu(window), to_gpu(np.asarray(background))

        subtract_background(raw, background, out=corrected)
        linearize_wavenumber(corrected, self.calib, out=linear, tmp=tmp)
        apodize(linear, window, out=linear)
        self.plan.forward(linear, out=spectrum)
        return log_compress(spectrum[:, :self.output_depth], self.contrast, self.brightness, out=out)

    def reconstruct(self, raw_aline):
        """重建单条A-line [N,] -> [depth,]"""
        if raw_aline.shape != (self.aline_size,):
            raise DimensionMismatch(f"A-line长度 {raw_aline.shape} 与标定长度 {self.aline_size} 不一致")
        return self.reconstruct_block(raw_aline[None, :])[0]


def reconstruct_aline(
    calib: Calibration,
    raw_aline: np.ndarray,
    window: Optional[np.ndarray],
    contrast: float,
    brightness: float,
    output_depth: int,
    engine: Optional[SpectralTransformEngine] = None
) -> np.ndarray:
    """
    单条A-line重建的便捷函数

    Args:
        calib: 标定数据
        raw_aline: 原始干涉信号 [N,]
        window: 窗函数 [N,]，None时使用Hamming窗
        contrast, brightness: 对数压缩参数
        output_depth: 保留的深度点数
        engine: FFT计划注册表，None时临时创建

    Returns:
        8位强度列 [output_depth,]
    """
    n = calib.aline_size
    if window is None:
        window = hamming_window(n)
    engine = engine or SpectralTransformEngine()
    recon = ALineReconstructor(calib, np.asarray(window, dtype=np.float64),
                               engine.get_plan_for(n), contrast, brightness, output_depth)
    return recon.reconstruct(np.asarray(raw_aline))
