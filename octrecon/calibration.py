"""
OCT标定数据模块
读取/保存背景光谱与波数线性化(相位)标定文件
"""

import threading
import warnings
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, NamedTuple, Optional, Union

import numpy as np

from .errors import MalformedCalibration

PathLike = Union[str, Path]

DEFAULT_BACKGROUND_FILE = 'SSOCTBackground.txt'
DEFAULT_PHASE_FILE = 'SSOCTCalibration180MHZ.txt'


class PhaseCalibUnit(NamedTuple):
    """单个输出采样点的线性插值配方"""
    index: int
    left_coeff: float
    right_coeff: float


def _read_tokens(filename: PathLike, n_values: int, what: str) -> List[str]:
    """读取文本文件中以空白分隔的前n_values个字段"""
    try:
        with open(filename, 'r') as f:
            tokens = f.read().split()
    except OSError as e:
        raise MalformedCalibration(f"{what}文件I/O错误 {filename}: {e}") from e

    if len(tokens) < n_values:
        raise MalformedCalibration(
            f"{what}文件提前结束 {filename}: 需要 {n_values} 个值, 仅读到 {len(tokens)} 个"
        )
    return tokens[:n_values]


def read_background_file(filename: PathLike, aline_size: int) -> np.ndarray:
    """
    读取背景光谱文件

    Args:
        filename: 背景文件路径
        aline_size: A-line采样点数

    Returns:
        background: 背景光谱 [aline_size,]
    """
    tokens = _read_tokens(filename, aline_size, '背景')
    background = np.empty(aline_size, dtype=np.float64)
    for i, tok in enumerate(tokens):
        try:
            background[i] = float(tok)
        except ValueError as e:
            raise MalformedCalibration(
                f"背景文件解析失败 {filename}: 第 {i} 个值 '{tok}' 不是浮点数"
            ) from e
    return background


def read_phase_file(filename: PathLike, aline_size: int):
    """
    读取相位标定文件，每条记录为 (index, left_coeff, right_coeff)

    Args:
        filename: 相位标定文件路径
        aline_size: A-line采样点数

    Returns:
        index, left_coeff, right_coeff: 三个长度为aline_size的数组
    """
    tokens = _read_tokens(filename, 3 * aline_size, '相位标定')
    index = np.empty(aline_size, dtype=np.intp)
    left = np.empty(aline_size, dtype=np.float64)
    right = np.empty(aline_size, dtype=np.float64)
    for i in range(aline_size):
        idx_tok, l_tok, r_tok = tokens[3 * i:3 * i + 3]
        try:
            index[i] = int(idx_tok)
            left[i] = float(l_tok)
            right[i] = float(r_tok)
        except ValueError as e:
            raise MalformedCalibration(
                f"相位标定文件解析失败 {filename}: 第 {i} 条记录 "
                f"({idx_tok}, {l_tok}, {r_tok}) 格式错误"
            ) from e
    return index, left, right


@dataclass(frozen=True, eq=False)
class Calibration:
    """
    单套系统的标定数据

    加载后只读，可被所有重建线程共享；重新加载时整体替换。

    Attributes:
        background: 背景光谱 [N,]
        index: 插值左端点下标 [N,]
        left_coeff: 左端点系数 [N,]
        right_coeff: 右端点系数 [N,]
    """
    background: np.ndarray
    index: np.ndarray
    left_coeff: np.ndarray
    right_coeff: np.ndarray

    def __post_init__(self):
        n = self.background.shape[0]
        if n < 2:
            raise MalformedCalibration(f"A-line长度过短: {n}")
        for name in ('index', 'left_coeff', 'right_coeff'):
            if getattr(self, name).shape != (n,):
                raise MalformedCalibration(
                    f"{name} 长度 {getattr(self, name).shape} 与背景长度 {n} 不一致"
                )

        # 仅前N-1条记录参与插值，必须指向合法的 (idx, idx+1)
        used = self.index[:n - 1]
        bad = np.flatnonzero((used < 0) | (used >= n - 1))
        if bad.size:
            i = int(bad[0])
            raise MalformedCalibration(
                f"相位标定第 {i} 条记录下标 {int(self.index[i])} 超出范围 [0, {n - 1})"
            )
        if self.index[n - 1] < 0:
            raise MalformedCalibration(f"相位标定最后一条记录下标为负: {int(self.index[n - 1])}")

        for name in ('background', 'index', 'left_coeff', 'right_coeff'):
            getattr(self, name).flags.writeable = False

    @property
    def aline_size(self) -> int:
        return int(self.background.shape[0])

    def phase_unit(self, i: int) -> PhaseCalibUnit:
        return PhaseCalibUnit(int(self.index[i]), float(self.left_coeff[i]), float(self.right_coeff[i]))

    @classmethod
    def from_arrays(cls, background, index, left_coeff, right_coeff) -> 'Calibration':
        """从数组构造 (复制输入)"""
        return cls(
            background=np.array(background, dtype=np.float64),
            index=np.array(index, dtype=np.intp),
            left_coeff=np.array(left_coeff, dtype=np.float64),
            right_coeff=np.array(right_coeff, dtype=np.float64),
        )

    @classmethod
    def from_units(cls, background, units) -> 'Calibration':
        """从PhaseCalibUnit序列构造"""
        units = list(units)
        return cls.from_arrays(
            background,
            [u[0] for u in units],
            [u[1] for u in units],
            [u[2] for u in units],
        )

    @classmethod
    def identity(cls, aline_size: int) -> 'Calibration':
        """零背景、恒等插值 (phase[i] = {i, 1, 0}) 的标定"""
        return cls.from_arrays(
            np.zeros(aline_size),
            np.arange(aline_size),
            np.ones(aline_size),
            np.zeros(aline_size),
        )

    def with_background(self, background) -> 'Calibration':
        """返回替换背景光谱后的新标定"""
        background = np.asarray(background, dtype=np.float64)
        if background.shape != self.background.shape:
            raise MalformedCalibration(
                f"新背景长度 {background.shape} 与标定长度 {self.background.shape} 不一致"
            )
        return Calibration.from_arrays(background, self.index, self.left_coeff, self.right_coeff)

    def save_to_dir(
        self,
        calib_dir: PathLike,
        background_file: str = DEFAULT_BACKGROUND_FILE,
        phase_file: str = DEFAULT_PHASE_FILE
    ) -> Path:
        """
        将标定数据写入目录 (与load_calibration读取格式一致)

        Returns:
            标定目录路径
        """
        calib_dir = Path(calib_dir)
        calib_dir.mkdir(parents=True, exist_ok=True)
        np.savetxt(str(calib_dir / background_file), self.background, fmt='%.10g')
        phase = np.column_stack([self.index, self.left_coeff, self.right_coeff])
        np.savetxt(str(calib_dir / phase_file), phase, fmt=['%d', '%.10g', '%.10g'])
        return calib_dir


def load_calibration(aline_size: int, background_file: PathLike, phase_file: PathLike) -> Calibration:
    """
    加载标定数据

    Args:
        aline_size: A-line采样点数
        background_file: 背景光谱文件
        phase_file: 相位标定文件

    Returns:
        Calibration对象

    Raises:
        MalformedCalibration: 文件缺失、提前结束、解析失败或下标越界
    """
    background = read_background_file(background_file, aline_size)
    index, left, right = read_phase_file(phase_file, aline_size)
    return Calibration(background=background, index=index, left_coeff=left, right_coeff=right)


def estimate_background(fringe: np.ndarray, aline_size: int) -> np.ndarray:
    """
    由一帧(或多帧)干涉信号的A-line平均估计背景光谱

    Args:
        fringe: 原始干涉信号, 长度为aline_size的整数倍
        aline_size: A-line采样点数

    Returns:
        background: 平均光谱 [aline_size,]
    """
    fringe = np.asarray(fringe)
    if aline_size <= 0 or fringe.size == 0 or fringe.size % aline_size != 0:
        raise MalformedCalibration(f"干涉信号长度 {fringe.size} 不是A-line长度 {aline_size} 的整数倍")
    return fringe.reshape(-1, aline_size).mean(axis=0, dtype=np.float64)


def new_calib_dir_name(prefix: str = 'OCTcalib', when: Optional[datetime] = None) -> str:
    """新建标定目录名, 例如 'OCTcalib 20240329191006'"""
    when = when or datetime.now()
    return f"{prefix} {when.strftime('%Y%m%d%H%M%S')}"


def looks_like_calib_dir(path: PathLike) -> bool:
    """目录名中包含'calib'(不区分大小写)即视为标定目录"""
    path = Path(path)
    return path.is_dir() and 'calib' in path.name.lower()


class CalibrationStore:
    """
    当前标定数据的持有者

    加载失败时保留上一次成功加载的标定。替换标定需与正在进行的
    重建串行执行，本类只保证替换本身是原子的。
    """

    def __init__(
        self,
        aline_size: int,
        background_file: str = DEFAULT_BACKGROUND_FILE,
        phase_file: str = DEFAULT_PHASE_FILE,
        verbose: bool = False
    ):
        self.aline_size = aline_size
        self.background_file = background_file
        self.phase_file = phase_file
        self.verbose = verbose
        self.calib_dir: Optional[Path] = None
        self._calibration: Optional[Calibration] = None
        self._lock = threading.Lock()

    @property
    def calibration(self) -> Optional[Calibration]:
        return self._calibration

    @property
    def ok(self) -> bool:
        return self._calibration is not None

    def replace(self, calibration: Calibration):
        """整体替换当前标定"""
        if calibration.aline_size != self.aline_size:
            raise MalformedCalibration(
                f"标定长度 {calibration.aline_size} 与A-line长度 {self.aline_size} 不一致"
            )
        with self._lock:
            self._calibration = calibration

    def load(self, background_file: PathLike, phase_file: PathLike) -> Optional[Calibration]:
        """
        加载标定文件，失败时保留原标定

        Returns:
            新的Calibration对象，失败时返回None
        """
        try:
            calib = load_calibration(self.aline_size, background_file, phase_file)
        except MalformedCalibration as e:
            warnings.warn(f"加载标定失败，保留原标定: {e}")
            return None

        self.replace(calib)
        if self.verbose:
            print(f"成功加载标定: {background_file}, {phase_file}")
        return calib

    def load_dir(self, calib_dir: PathLike) -> Optional[Calibration]:
        """从标定目录加载默认文件名的背景与相位文件"""
        calib_dir = Path(calib_dir)
        calib = self.load(calib_dir / self.background_file, calib_dir / self.phase_file)
        if calib is not None:
            self.calib_dir = calib_dir
        return calib

    def update_background(self, fringe: np.ndarray) -> Calibration:
        """用新采集的干涉信号平均值替换背景光谱"""
        if self._calibration is None:
            raise MalformedCalibration("尚未加载标定，无法更新背景")
        calib = self._calibration.with_background(estimate_background(fringe, self.aline_size))
        self.replace(calib)
        return calib

    def save_to_new_dir(self, parent_dir: PathLike, prefix: str = 'OCTcalib',
                        when: Optional[datetime] = None) -> Path:
        """将当前标定保存到 parent_dir 下带时间戳的新目录"""
        if self._calibration is None:
            raise MalformedCalibration("尚未加载标定，无法保存")
        target = Path(parent_dir) / new_calib_dir_name(prefix, when)
        return self._calibration.save_to_dir(target, self.background_file, self.phase_file)
