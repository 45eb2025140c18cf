"""
OCT重建参数配置文件
功能: 集中管理所有重建处理参数
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class CalibParams:
    """标定文件参数"""
    aline_size: int = 2048                              # 每条A-line的采样点数
    background_file: str = 'SSOCTBackground.txt'        # 背景光谱文件名
    phase_file: str = 'SSOCTCalibration180MHZ.txt'      # 相位(波数线性化)标定文件名
    calib_dir: Optional[str] = None                     # 默认标定目录
    calib_dir_prefix: str = 'OCTcalib'                  # 新建标定目录的名称前缀


@dataclass
class ReconParams:
    """B-scan重建参数"""
    image_depth: int = 624          # 保留的深度采样点数
    contrast: float = 9.0           # 对数压缩对比度
    brightness: float = -57.0       # 对数压缩亮度 (dB偏移)
    additional_offset: int = 0      # 手动附加的旋转偏移 (列数, 仅作用一帧)
    lines_per_frame: int = 2200     # 每帧A-line数 (原始文件分帧用)
    max_frames: int = 0             # 最大处理帧数 (0:处理所有帧)


@dataclass
class DistortionParams:
    """畸变校正参数"""
    enabled: bool = True
    # 实际A-line数 -> 理论A-line数; 2500线的离体探头不需要校正
    modes: Dict[int, int] = field(default_factory=lambda: {2200: 2000})


@dataclass
class AlignParams:
    """帧间旋转配准参数"""
    enabled: bool = True


@dataclass
class RadialParams:
    """极坐标(径向)图像参数"""
    make_radial: bool = True        # 是否生成径向图像
    pad_top: int = 625              # 扫描中心到首个深度采样点的偏移 (行数)


@dataclass
class ParallelParams:
    """并行处理参数"""
    max_workers: Optional[int] = None   # 最大worker数 (None: CPU核数)
    chunk_size: int = 64                # 每个任务处理的A-line数
    use_gpu: bool = False               # 是否使用CuPy在GPU上整帧处理

    def resolved_workers(self) -> int:
        """返回实际使用的worker数"""
        if self.max_workers is not None and self.max_workers > 0:
            return self.max_workers
        return os.cpu_count() or 1


@dataclass
class OutputParams:
    """输出控制参数"""
    save_png: bool = True           # 是否逐帧保存PNG
    save_dicom: bool = False        # 是否保存多帧DICOM
    verbose: bool = False           # 是否打印详细信息


@dataclass
class ConfigParams:
    """OCT重建参数配置总类"""
    calib: CalibParams = field(default_factory=CalibParams)
    recon: ReconParams = field(default_factory=ReconParams)
    distortion: DistortionParams = field(default_factory=DistortionParams)
    align: AlignParams = field(default_factory=AlignParams)
    radial: RadialParams = field(default_factory=RadialParams)
    parallel: ParallelParams = field(default_factory=ParallelParams)
    output: OutputParams = field(default_factory=OutputParams)

    def validate(self):
        """验证参数合理性"""
        if self.calib.aline_size < 2:
            print("警告: A-line长度设置有误: aline_size应不小于2")

        if self.recon.image_depth > self.calib.aline_size // 2 + 1:
            print(f"警告: 图像深度 {self.recon.image_depth} 超过可用频点数 "
                  f"{self.calib.aline_size // 2 + 1}")

        for actual, theory in self.distortion.modes.items():
            if not 0 < theory < actual:
                print(f"警告: 畸变校正模式设置有误: {actual} -> {theory}")

        if self.radial.pad_top < 0:
            print("警告: pad_top应为非负整数")

        if self.recon.lines_per_frame < 1:
            print("警告: lines_per_frame应为正整数")

        if self.parallel.chunk_size < 1:
            print("警告: chunk_size应为正整数")

    def print_summary(self):
        """打印参数摘要"""
        print("\n=== OCT重建参数配置摘要 ===")
        print(f"A-line长度: {self.calib.aline_size}")
        print(f"标定目录: {self.calib.calib_dir or '未设置'}")
        print(f"图像深度: {self.recon.image_depth}")
        print(f"对比度/亮度: {self.recon.contrast} / {self.recon.brightness}")
        print(f"畸变校正: {'启用' if self.distortion.enabled else '禁用'} (模式: {self.distortion.modes})")
        print(f"帧间配准: {'启用' if self.align.enabled else '禁用'}")
        print(f"径向图像: {'启用' if self.radial.make_radial else '禁用'} (pad_top: {self.radial.pad_top})")
        print(f"Worker数: {self.parallel.resolved_workers()} (GPU: {'启用' if self.parallel.use_gpu else '禁用'})")
        print(f"DICOM保存: {'启用' if self.output.save_dicom else '禁用'}")
        print("==========================\n")


def config_params() -> ConfigParams:
    """
    创建并返回默认配置参数

    Returns:
        ConfigParams: 包含所有处理参数的配置对象
    """
    params = ConfigParams()
    params.validate()
    return params
