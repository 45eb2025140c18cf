"""
频谱变换模块
按变换长度缓存实数->复数FFT计划，供所有A-line与所有帧复用
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
import scipy.fft

from .errors import DimensionMismatch, TransformPlanFailure
from .gpu_utils import get_array_module, is_gpu_array


@dataclass(frozen=True)
class RealFFTPlan:
    """
    固定长度的实数输入FFT计划

    创建后不再修改；并发调用forward时各自使用独立的输入/输出缓冲区。

    Attributes:
        length: 变换长度
        workers: scipy.fft 内部线程数 (逐行并行时保持为1)
    """
    length: int
    workers: int = 1

    @property
    def n_bins(self) -> int:
        """非冗余频点数 (length//2 + 1)"""
        return self.length // 2 + 1

    def forward(self, x, out: Optional[np.ndarray] = None):
        """
        沿最后一维做未归一化的实数->复数DFT

        Args:
            x: 实数输入 [..., length]
            out: 可选输出缓冲区 [..., n_bins]

        Returns:
            复数频谱 [..., n_bins]
        """
        if x.shape[-1] != self.length:
            raise DimensionMismatch(f"输入长度 {x.shape[-1]} 与计划长度 {self.length} 不一致")

        if is_gpu_array(x):
            xp = get_array_module(x)
            spec = xp.fft.rfft(x, n=self.length, axis=-1)
        else:
            spec = scipy.fft.rfft(x, n=self.length, axis=-1, workers=self.workers)

        if out is None:
            return spec
        out[...] = spec
        return out


class SpectralTransformEngine:
    """
    FFT计划注册表

    get_plan_for对同一长度始终返回同一个计划对象，可在多线程中调用。
    """

    def __init__(self, workers: int = 1):
        self.workers = workers
        self._plans: Dict[int, RealFFTPlan] = {}
        self._lock = threading.Lock()

    def get_plan_for(self, length: int) -> RealFFTPlan:
        """
        获取(必要时创建)指定长度的变换计划

        Raises:
            TransformPlanFailure: 长度非法或后端无法创建计划
        """
        plan = self._plans.get(length)
        if plan is not None:
            return plan

        with self._lock:
            plan = self._plans.get(length)
            if plan is None:
                plan = self._create_plan(length)
                self._plans[length] = plan
        return plan

    def _create_plan(self, length: int) -> RealFFTPlan:
        if int(length) != length or length <= 0:
            raise TransformPlanFailure(f"非法的变换长度: {length}")

        plan = RealFFTPlan(length=int(length), workers=self.workers)
        # 预热一次，使后端在此处暴露分配失败
        try:
            plan.forward(np.zeros(plan.length, dtype=np.float64))
        except (MemoryError, ValueError) as e:
            raise TransformPlanFailure(f"无法创建长度为 {length} 的FFT计划: {e}") from e
        return plan

    def forward(self, x):
        """使用与x长度对应的缓存计划做正变换"""
        return self.get_plan_for(x.shape[-1]).forward(x)

    def __contains__(self, length: int) -> bool:
        return length in self._plans

    def __len__(self) -> int:
        return len(self._plans)

    def clear(self):
        """清空缓存 (只能在没有进行中的重建时调用)"""
        with self._lock:
            self._plans.clear()
