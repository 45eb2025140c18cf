"""
OCT重建主处理模块
整合标定、B-scan重建、帧间配准与径向投影的处理流程
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import cv2
import numpy as np

from .bscan_recon import AlignmentContext, BscanReconstructor, ScanConversionParams
from .calibration import CalibrationStore
from .config_params import ConfigParams, config_params
from .dicom_utils import dicom_write
from .errors import DimensionMismatch, OCTReconError
from .radial import to_radial
from .spectral_transform import SpectralTransformEngine


@dataclass
class FrameResult:
    """单帧重建结果"""
    index: int
    bscan: np.ndarray
    radial: Optional[np.ndarray]
    shift: int = 0


def iter_raw_frames(filename: str, aline_size: int, lines_per_frame: int,
                    max_frames: int = 0) -> Iterator[np.ndarray]:
    """
    按帧读取连续存储的uint16原始干涉信号文件

    Args:
        filename: 原始文件路径
        aline_size: A-line采样点数
        lines_per_frame: 每帧A-line数
        max_frames: 最大帧数 (0:全部)

    Yields:
        fringe: 单帧干涉信号 [lines_per_frame×aline_size]
    """
    data = np.memmap(filename, dtype=np.uint16, mode='r')
    try:
        frame_size = aline_size * lines_per_frame
        n_frames = data.size // frame_size
        if n_frames == 0:
            raise DimensionMismatch(f"文件 {filename} 不足一帧: {data.size} < {frame_size}")
        if data.size % frame_size:
            print(f"警告: 文件末尾 {data.size % frame_size} 个采样点不足一帧，已忽略")

        if max_frames > 0:
            n_frames = min(n_frames, max_frames)

        # 复制出每帧，不持有对映射的引用
        for i in range(n_frames):
            yield np.array(data[i * frame_size:(i + 1) * frame_size]).reshape(lines_per_frame, aline_size)
    finally:
        del data


class OCTReconProcessor:
    """
    OCT重建处理器

    持有一套标定、一个FFT计划注册表、一个B-scan重建器和一个帧间配准状态。
    实时采集与离线回放应各自使用独立的处理器实例。
    """

    def __init__(self, params: Optional[ConfigParams] = None):
        self.params = params if params is not None else config_params()
        p = self.params

        self.calib_store = CalibrationStore(
            p.calib.aline_size, p.calib.background_file, p.calib.phase_file, verbose=p.output.verbose
        )
        self.engine = SpectralTransformEngine()
        self.bscan = BscanReconstructor.from_config(p, engine=self.engine)
        self.context = AlignmentContext()
        self.frame_index = 0

        if p.calib.calib_dir:
            self.load_calibration_dir(p.calib.calib_dir)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        self.bscan.close()

    def load_calibration_dir(self, calib_dir) -> bool:
        """加载标定目录，失败时保留原标定"""
        return self.calib_store.load_dir(calib_dir) is not None

    def start_sequence(self):
        """开始新的图像序列: 清空配准参考帧"""
        self.context.reset()
        self.frame_index = 0

    def update_background(self, fringe: np.ndarray, save_dir: Optional[str] = None) -> Optional[Path]:
        """
        用新采集的干涉信号更新背景光谱

        Args:
            fringe: 无样品时采集的干涉信号
            save_dir: 若指定，在其下新建带时间戳的标定目录并保存

        Returns:
            保存的标定目录，未保存时返回None
        """
        self.calib_store.update_background(fringe)
        if save_dir is None:
            return None

        p = self.params.calib
        path = self.calib_store.save_to_new_dir(save_dir, prefix=p.calib_dir_prefix)
        if p.calib_dir:
            self.calib_store.calibration.save_to_dir(p.calib_dir, p.background_file, p.phase_file)
        print(f"已保存新的标定文件到: {path}")
        return path

    def process_frame(self, fringe: np.ndarray) -> FrameResult:
        """
        重建一帧: B-scan (矩形) 与径向图像

        Args:
            fringe: 原始干涉信号, 长度为aline_size的整数倍

        Returns:
            FrameResult
        """
        calib = self.calib_store.calibration
        if calib is None:
            raise OCTReconError("请先加载包含背景与相位标定文件的标定目录")

        p = self.params
        offset = p.recon.additional_offset
        # 手动偏移只作用一帧
        p.recon.additional_offset = 0

        bscan = self.bscan.reconstruct_frame(
            calib, fringe, p.calib.aline_size, p.recon.image_depth,
            ScanConversionParams(p.recon.contrast, p.recon.brightness),
            context=self.context, additional_offset=offset
        )
        radial = to_radial(bscan, p.radial.pad_top) if p.radial.make_radial else None

        result = FrameResult(self.frame_index, bscan, radial, self.context.last_shift)
        self.frame_index += 1
        return result

    def process_file(self, input_file_path: str, output_base: str) -> Path:
        """
        重建单个原始干涉信号文件的全部帧

        Args:
            input_file_path: 原始文件路径 (连续uint16)
            output_base: 输出目录

        Returns:
            本文件的输出目录
        """
        file_start_time = time.time()
        p = self.params

        input_path = Path(input_file_path)
        if not input_path.exists():
            raise FileNotFoundError(f"输入文件不存在: {input_file_path}")

        name = input_path.stem
        foutputdir = Path(output_base) / name
        foutputdir.mkdir(parents=True, exist_ok=True)

        print(f"\n{'='*50}")
        print(f"正在处理文件: {input_path.name}")
        print(f"A-line长度: {p.calib.aline_size}, 每帧A-line数: {p.recon.lines_per_frame}")
        print(f"{'='*50}")

        self.start_sequence()
        bscans, radials = [], []

        for fringe in iter_raw_frames(str(input_path), p.calib.aline_size,
                                      p.recon.lines_per_frame, p.recon.max_frames):
            result = self.process_frame(fringe)
            i = result.index

            if (i + 1) % 10 == 0 or i == 0:
                print(f"  处理 B-scan {i + 1}... (配准偏移: {result.shift})")

            if p.output.save_png:
                cv2.imwrite(str(foutputdir / f"{name}_bscan_{i:04d}.png"), result.bscan)
                if result.radial is not None:
                    cv2.imwrite(str(foutputdir / f"{name}_radial_{i:04d}.png"), result.radial)

            if p.output.save_dicom:
                bscans.append(result.bscan)
                if result.radial is not None:
                    radials.append(result.radial)

        if p.output.save_dicom and bscans:
            print("保存DICOM文件...")
            dicom_write(np.stack(bscans, axis=2), str(foutputdir / f"{name}_bscan.dcm"))
            if radials:
                dicom_write(np.stack(radials, axis=2), str(foutputdir / f"{name}_radial.dcm"))

        proc_time = time.time() - file_start_time
        print(f"\n文件 {input_path.name} 处理完成! 共 {self.frame_index} 帧")
        print(f"输出目录: {foutputdir}")
        print(f"处理时间: {proc_time:.2f} 秒")
        return foutputdir
