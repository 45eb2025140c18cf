"""
B-scan重建模块
将整帧A-line分发到线程池并行重建，拼接成二维图像后进行畸变校正和帧间旋转配准
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from .aline_recon import ALineReconstructor
from .calibration import Calibration
from .config_params import ConfigParams
from .errors import DimensionMismatch
from .gpu_utils import GPU_AVAILABLE, hamming_window, to_cpu, to_gpu
from .image_utils import circshift_columns, phase_correlate_shift, resize_area
from .spectral_transform import SpectralTransformEngine


@dataclass
class ScanConversionParams:
    """对数压缩参数"""
    contrast: float = 9.0
    brightness: float = -57.0


class AlignmentContext:
    """
    帧间旋转配准状态

    保存上一帧(已配准)的图像作为下一帧的参考。每个独立的图像流
    (实时采集、离线回放)各自持有一个实例。
    """

    def __init__(self):
        self._prev: Optional[np.ndarray] = None
        self._lock = threading.Lock()
        self.last_shift = 0

    @property
    def previous(self) -> Optional[np.ndarray]:
        return self._prev

    def reset(self):
        """新序列开始时清空参考帧"""
        with self._lock:
            self._prev = None
            self.last_shift = 0

    def align(self, frame: np.ndarray, additional_offset: int = 0) -> np.ndarray:
        """
        将当前帧与参考帧配准并更新参考帧

        若参考帧尺寸与当前帧一致，用相位相关估计水平位移d，再将当前帧的列循环左移d；
        尺寸不一致时跳过配准，直接保存为新的参考帧。

        Args:
            frame: 当前帧 [depth×cols]
            additional_offset: 额外的手动旋转 (列数)

        Returns:
            配准后的图像
        """
        with self._lock:
            shift = 0
            if self._prev is not None and self._prev.shape == frame.shape:
                shift = phase_correlate_shift(self._prev, frame)

            total = shift + additional_offset
            if total:
                frame = circshift_columns(frame, total)

            self._prev = frame.copy()
            self.last_shift = shift
        return frame


def correct_distortion(image: np.ndarray, modes: Dict[int, int]) -> np.ndarray:
    """
    畸变校正并缩放到理论A-line数

    仅当列数为已知采集模式(modes中的键)时触发: 以左侧宽度为w的条带与理论边界处的
    条带做相位相关得到偏移量offset，再将 [0, theory+offset) 列面积插值缩放到theory列。

    Args:
        image: uint8图像 [depth×nLines]
        modes: 实际A-line数 -> 理论A-line数

    Returns:
        校正后的uint8图像 [depth×theory]，未触发时原样返回
    """
    n_lines = image.shape[1]
    theory = modes.get(n_lines)
    if theory is None or not 0 < theory < n_lines:
        return image

    mat = image.astype(np.float32)
    corr_width = n_lines - theory
    first_strip = mat[:, :corr_width]
    last_strip = mat[:, theory:theory + corr_width]
    offset = phase_correlate_shift(first_strip, last_strip)

    width = int(np.clip(theory + offset, 1, n_lines))
    resized = resize_area(mat[:, :width], theory)
    return np.clip(np.rint(resized), 0, 255).astype(np.uint8)


class BscanReconstructor:
    """
    B-scan重建器

    持有FFT计划注册表与线程池；标定与FFT计划在一帧重建期间只读共享，
    每个worker线程使用自己的中间缓冲区。重建调用是同步的，所有A-line
    完成后才返回，结果按A-line下标放置。
    """

    def __init__(
        self,
        engine: Optional[SpectralTransformEngine] = None,
        max_workers: int = 1,
        chunk_size: int = 64,
        distortion_modes: Optional[Dict[int, int]] = None,
        distortion_enabled: bool = True,
        align_enabled: bool = True,
        use_gpu: bool = False,
        verbose: bool = False
    ):
        self.engine = engine or SpectralTransformEngine()
        self.max_workers = max(1, int(max_workers))
        self.chunk_size = max(1, int(chunk_size))
        self.distortion_modes = dict(distortion_modes) if distortion_modes is not None else {2200: 2000}
        self.distortion_enabled = distortion_enabled
        self.align_enabled = align_enabled
        self.use_gpu = use_gpu and GPU_AVAILABLE
        self.verbose = verbose

        self._windows: Dict[int, np.ndarray] = {}
        self._recon: Optional[ALineReconstructor] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

        if use_gpu and not GPU_AVAILABLE:
            print("警告: 请求GPU重建但CuPy不可用，使用CPU线程池")

    @classmethod
    def from_config(cls, params: ConfigParams, engine: Optional[SpectralTransformEngine] = None) -> 'BscanReconstructor':
        return cls(
            engine=engine,
            max_workers=params.parallel.resolved_workers(),
            chunk_size=params.parallel.chunk_size,
            distortion_modes=params.distortion.modes,
            distortion_enabled=params.distortion.enabled,
            align_enabled=params.align.enabled,
            use_gpu=params.parallel.use_gpu,
            verbose=params.output.verbose,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        """关闭线程池"""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def window_for(self, aline_size: int) -> np.ndarray:
        window = self._windows.get(aline_size)
        if window is None:
            window = hamming_window(aline_size)
            window.flags.writeable = False
            self._windows[aline_size] = window
        return window

    def _reconstructor(self, calib: Calibration, output_depth: int,
                       conversion: ScanConversionParams, window: np.ndarray) -> ALineReconstructor:
        # 参数不变时复用，保留各worker已分配的缓冲区
        recon = self._recon
        if (recon is None or recon.calib is not calib or recon.window is not window
                or recon.output_depth != output_depth
                or recon.contrast != conversion.contrast or recon.brightness != conversion.brightness):
            n = calib.aline_size
            recon = ALineReconstructor(
                calib, window, self.engine.get_plan_for(n),
                conversion.contrast, conversion.brightness, output_depth
            )
            self._recon = recon
        return recon

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='octrecon')
        return self._executor

    def _reconstruct_lines(self, recon: ALineReconstructor, lines: np.ndarray) -> np.ndarray:
        """逐A-line重建，返回 [nLines×depth] (每行对应一条A-line)"""
        n_lines = lines.shape[0]

        if self.use_gpu:
            return to_cpu(recon.reconstruct_block(to_gpu(lines)))

        cols = np.empty((n_lines, recon.output_depth), dtype=np.uint8)
        bounds = [(s, min(s + self.chunk_size, n_lines)) for s in range(0, n_lines, self.chunk_size)]

        if self.max_workers == 1 or len(bounds) == 1:
            for start, stop in bounds:
                recon.reconstruct_block(lines[start:stop], out=cols[start:stop])
            return cols

        executor = self._get_executor()
        futures = [
            executor.submit(recon.reconstruct_block, lines[start:stop], cols[start:stop])
            for start, stop in bounds
        ]
        # 等待全部完成；任一任务异常都会在此抛出，不返回不完整的图像
        for future in futures:
            future.result()
        return cols

    def reconstruct_frame(
        self,
        calib: Calibration,
        fringe: np.ndarray,
        aline_size: int,
        output_depth: int,
        conversion: Optional[ScanConversionParams] = None,
        context: Optional[AlignmentContext] = None,
        additional_offset: int = 0,
        window: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        重建一帧B-scan

        Args:
            calib: 标定数据
            fringe: 原始干涉信号 (uint16), 长度为aline_size的整数倍
            aline_size: A-line采样点数
            output_depth: 输出深度点数
            conversion: 对数压缩参数
            context: 帧间配准状态，None时不做配准
            additional_offset: 额外的手动旋转 (列数)
            window: 窗函数 [aline_size,]，None时使用Hamming窗

        Returns:
            image: uint8图像 [output_depth×cols]
        """
        conversion = conversion or ScanConversionParams()
        fringe = np.asarray(fringe)

        if aline_size <= 0 or fringe.size == 0 or fringe.size % aline_size != 0:
            raise DimensionMismatch(f"干涉信号长度 {fringe.size} 不是A-line长度 {aline_size} 的整数倍")
        if calib.aline_size != aline_size:
            raise DimensionMismatch(f"标定长度 {calib.aline_size} 与A-line长度 {aline_size} 不一致")

        lines = fringe.reshape(-1, aline_size)

        with self._lock:
            window = self.window_for(aline_size) if window is None else np.asarray(window, dtype=np.float64)
            recon = self._reconstructor(calib, output_depth, conversion, window)
            cols = self._reconstruct_lines(recon, lines)

        # 转置: 行为深度(向下递增)，列为A-line下标
        image = np.ascontiguousarray(cols.T)

        if self.distortion_enabled:
            image = correct_distortion(image, self.distortion_modes)

        if context is not None and self.align_enabled:
            image = context.align(image, additional_offset)
        elif additional_offset:
            image = circshift_columns(image, additional_offset)

        if self.verbose:
            print(f"B-scan重建完成: {lines.shape[0]} 条A-line -> {image.shape}")
        return np.ascontiguousarray(image)
