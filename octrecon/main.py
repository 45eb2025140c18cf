"""
OCT重建主入口脚本
批量重建原始干涉信号文件
"""

import argparse
import sys
import time
import traceback
from pathlib import Path
from typing import List, Optional

from .calibration import looks_like_calib_dir
from .config_params import config_params
from .recon_processor import OCTReconProcessor

RAW_SUFFIXES = ('.bin', '.dat')


def find_raw_files(data_path: Path) -> List[Path]:
    """目录下的所有原始文件，或单个文件本身"""
    if data_path.is_file():
        return [data_path]
    return sorted(f for f in data_path.iterdir() if f.suffix.lower() in RAW_SUFFIXES)


def find_calib_dir(data_path: Path) -> Optional[Path]:
    """数据目录下名称含'calib'的子目录，按名称排序取最后一个(时间戳最新)"""
    if not data_path.is_dir():
        data_path = data_path.parent
    candidates = sorted(d for d in data_path.iterdir() if looks_like_calib_dir(d))
    return candidates[-1] if candidates else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='octrecon',
        description='扫频OCT原始干涉信号 -> B-scan / 径向图像 批量重建'
    )
    parser.add_argument('data_path', help='原始文件(.bin/.dat)或包含原始文件的目录')
    parser.add_argument('--calib-dir', help='包含背景与相位标定文件的目录 (默认: 数据目录下名称含calib的子目录)')
    parser.add_argument('--output', default='./output', help='输出目录')
    parser.add_argument('--aline-size', type=int, help='每条A-line的采样点数')
    parser.add_argument('--lines-per-frame', type=int, help='每帧A-line数')
    parser.add_argument('--depth', type=int, help='输出图像深度')
    parser.add_argument('--contrast', type=float, help='对数压缩对比度')
    parser.add_argument('--brightness', type=float, help='对数压缩亮度')
    parser.add_argument('--pad-top', type=int, help='径向图像上方补零行数')
    parser.add_argument('--max-frames', type=int, help='每个文件最大处理帧数 (0:全部)')
    parser.add_argument('--workers', type=int, help='线程池大小')
    parser.add_argument('--dicom', action='store_true', help='同时保存多帧DICOM')
    parser.add_argument('--no-radial', action='store_true', help='不生成径向图像')
    parser.add_argument('--verbose', action='store_true', help='打印详细信息')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    主处理函数

    Args:
        argv: 命令行参数，None时使用sys.argv

    Returns:
        进程退出码
    """
    args = build_parser().parse_args(argv)

    params = config_params()
    if args.aline_size is not None:
        params.calib.aline_size = args.aline_size
    if args.lines_per_frame is not None:
        params.recon.lines_per_frame = args.lines_per_frame
    if args.depth is not None:
        params.recon.image_depth = args.depth
    if args.contrast is not None:
        params.recon.contrast = args.contrast
    if args.brightness is not None:
        params.recon.brightness = args.brightness
    if args.pad_top is not None:
        params.radial.pad_top = args.pad_top
    if args.max_frames is not None:
        params.recon.max_frames = args.max_frames
    if args.workers is not None:
        params.parallel.max_workers = args.workers
    params.output.save_dicom = args.dicom
    params.radial.make_radial = not args.no_radial
    params.output.verbose = args.verbose
    params.validate()

    data_path = Path(args.data_path)
    output_base = Path(args.output)

    # 检查数据路径
    if not data_path.exists():
        print(f"数据路径不存在: {data_path}")
        return 1

    output_base.mkdir(parents=True, exist_ok=True)
    print(f"输出目录: {output_base}")

    raw_files = find_raw_files(data_path)
    if not raw_files:
        print(f"在 {data_path} 中未找到原始文件")
        return 1

    calib_dir = Path(args.calib_dir) if args.calib_dir else find_calib_dir(data_path)
    if calib_dir is None:
        print(f"未指定标定目录，且 {data_path} 中没有名称含calib的目录")
        return 1
    if not looks_like_calib_dir(calib_dir):
        print(f"警告: {calib_dir} 的目录名不含calib，可能不是标定目录")
    print(f"标定目录: {calib_dir}")

    print(f"找到 {len(raw_files)} 个原始文件:")
    for i, f in enumerate(raw_files, 1):
        print(f"[{i}] {f.name}")

    params.print_summary()

    with OCTReconProcessor(params) as processor:
        if not processor.load_calibration_dir(calib_dir):
            print(f"加载标定失败: {calib_dir}")
            return 1

        total_start_time = time.time()
        success_count = 0

        for i, raw_file in enumerate(raw_files, 1):
            print(f"\n开始处理第 {i}/{len(raw_files)} 个文件: {raw_file.name}")
            try:
                processor.process_file(str(raw_file), str(output_base))
                success_count += 1
            except Exception as e:
                print(f"处理文件 {raw_file.name} 时出错: {e}")
                traceback.print_exc()
                continue

    total_time = time.time() - total_start_time
    print(f"\n{'='*50}")
    print("所有文件处理完成!")
    print(f"成功: {success_count}/{len(raw_files)}")
    print(f"总耗时: {total_time:.2f} 秒")
    print(f"{'='*50}")
    return 0 if success_count == len(raw_files) else 1


if __name__ == "__main__":
    sys.exit(main())
