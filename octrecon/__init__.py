# Swept-source OCT Reconstruction Python Package
# 扫频OCT实时/离线重建

"""
OCT重建Python包

主要功能:
- 标定文件读取 (背景光谱 + 波数线性化系数)
- 按长度缓存的FFT计划
- A-line重建 (背景扣除、波数线性化、Hamming加窗、FFT、对数压缩)
- B-scan并行重建
  - 畸变校正 (2200 -> 2000 A-line)
  - 帧间旋转配准 (相位相关)
- 径向(极坐标)图像
- DICOM文件保存
- GPU加速 (可选，使用CuPy)

使用方法:
    from octrecon import OCTReconProcessor
    with OCTReconProcessor() as proc:
        proc.load_calibration_dir(calib_dir)
        result = proc.process_frame(fringe)

或命令行:
    octrecon <数据目录> --calib-dir <标定目录> --output <输出目录>

依赖:
    必需: numpy, scipy, opencv-python
    推荐: cupy (GPU加速), pydicom (DICOM支持)
"""

__version__ = "1.0.0"

from .config_params import config_params, ConfigParams
from .errors import DimensionMismatch, MalformedCalibration, OCTReconError, TransformPlanFailure
from .calibration import Calibration, CalibrationStore, load_calibration
from .spectral_transform import SpectralTransformEngine
from .aline_recon import ALineReconstructor, reconstruct_aline
from .bscan_recon import AlignmentContext, BscanReconstructor, ScanConversionParams
from .radial import to_radial
from .recon_processor import FrameResult, OCTReconProcessor

__all__ = [
    'config_params',
    'ConfigParams',
    'DimensionMismatch',
    'MalformedCalibration',
    'OCTReconError',
    'TransformPlanFailure',
    'Calibration',
    'CalibrationStore',
    'load_calibration',
    'SpectralTransformEngine',
    'ALineReconstructor',
    'reconstruct_aline',
    'AlignmentContext',
    'BscanReconstructor',
    'ScanConversionParams',
    'to_radial',
    'FrameResult',
    'OCTReconProcessor',
]
