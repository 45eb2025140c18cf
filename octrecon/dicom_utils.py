"""
DICOM文件处理模块
将重建的8位B-scan/径向图像序列保存为多帧DICOM
"""

import numpy as np
import warnings

try:
    import pydicom
    from pydicom.dataset import Dataset, FileDataset
    from pydicom.uid import generate_uid
    PYDICOM_AVAILABLE = True
except ImportError:
    PYDICOM_AVAILABLE = False
    warnings.warn("pydicom未安装，DICOM功能不可用。安装方法: pip install pydicom")


def dicom_write(data: np.ndarray, filename: str):
    """
    将8位灰度图像保存为DICOM文件

    Args:
        data: 图像数据，支持以下格式:
            - 2D: [H, W] 单帧灰度图
            - 3D: [H, W, N] 多帧灰度图
        filename: 输出文件名
    """
    if not PYDICOM_AVAILABLE:
        raise ImportError("pydicom未安装")

    data = np.asarray(data).astype(np.uint8)
    if data.ndim == 2:
        frames = data[np.newaxis]
    elif data.ndim == 3:
        # 重排数据: [H, W, N] -> [N, H, W]
        frames = np.transpose(data, (2, 0, 1))
    else:
        raise ValueError(f"不支持的图像维度: {data.shape}")

    # 创建文件元信息
    file_meta = Dataset()
    file_meta.MediaStorageSOPClassUID = '1.2.840.10008.5.1.4.1.1.7'  # Secondary Capture
    file_meta.MediaStorageSOPInstanceUID = generate_uid()
    file_meta.TransferSyntaxUID = pydicom.uid.ImplicitVRLittleEndian

    # 创建数据集
    ds = FileDataset(filename, {}, file_meta=file_meta, preamble=b"\0" * 128)

    # 设置基本属性
    ds.SOPClassUID = file_meta.MediaStorageSOPClassUID
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.Modality = 'OT'  # Other
    ds.PatientName = 'Anonymous'
    ds.PatientID = '000000'

    ds.Rows, ds.Columns = frames.shape[1:]
    ds.NumberOfFrames = frames.shape[0]
    ds.PhotometricInterpretation = 'MONOCHROME2'
    ds.SamplesPerPixel = 1
    ds.BitsAllocated = 8
    ds.BitsStored = 8
    ds.HighBit = 7
    ds.PixelRepresentation = 0
    ds.PixelData = np.ascontiguousarray(frames).tobytes()

    # 保存文件
    ds.save_as(filename)


def dicom_read(filename: str) -> np.ndarray:
    """
    读取DICOM文件为numpy数组

    Args:
        filename: DICOM文件路径

    Returns:
        图像数据数组 ([H, W] 或 [N, H, W])
    """
    if not PYDICOM_AVAILABLE:
        raise ImportError("pydicom未安装")

    ds = pydicom.dcmread(filename)
    return ds.pixel_array
