"""
OCT重建异常类型
"""


class OCTReconError(Exception):
    """重建模块异常基类"""


class MalformedCalibration(OCTReconError, ValueError):
    """背景或相位标定文件缺失、截断或无法解析"""


class DimensionMismatch(OCTReconError, ValueError):
    """输入尺寸与A-line长度不匹配，或输入图像为空"""


class TransformPlanFailure(OCTReconError, RuntimeError):
    """FFT后端无法为指定长度创建变换计划"""
