#!/usr/bin/env python3
"""
Marker Anchor 启动脚本
单目摄像头实时标记锚定

使用方法:
python run_marker_anchor.py --marker assets/marker.png --marker-size 0.1
python run_marker_anchor.py --config configs/video_file.yaml
python run_marker_anchor.py --help  # 显示帮助信息
"""

import sys
import argparse
from pathlib import Path


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Marker Anchor - 平面标记锚定 + 视觉里程计",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
使用示例:
  # 使用默认摄像头
  python run_marker_anchor.py --marker assets/marker.png --marker-size 0.1

  # 回放视频文件
  python run_marker_anchor.py --source data/marker_sequence.mp4 --no-vis

  # 自定义保存目录
  python run_marker_anchor.py --config configs/default.yaml --save-dir results/test1

窗口按键:
  o  以当前位姿设置世界原点
  r  重置跟踪状态
  q  退出
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='配置文件路径 (默认: 内置默认配置)'
    )

    parser.add_argument(
        '--marker',
        type=str,
        default=None,
        help='参考标记图像路径'
    )

    parser.add_argument(
        '--marker-size',
        type=float,
        default=None,
        help='标记物理边长 (m)'
    )

    parser.add_argument(
        '--source',
        type=str,
        default=None,
        help='摄像头索引或视频文件路径'
    )

    parser.add_argument(
        '--save-dir', '-s',
        type=str,
        default='marker_anchor_results',
        help='结果保存目录'
    )

    parser.add_argument(
        '--no-vis',
        action='store_true',
        help='关闭可视化窗口'
    )

    parser.add_argument(
        '--max-frames',
        type=int,
        default=None,
        help='最多处理的帧数'
    )

    return parser.parse_args(argv)


def build_config(args):
    """加载配置并应用命令行覆盖"""
    from marker_anchor.utils.config_manager import ConfigManager

    config = ConfigManager.default_config()
    if args.config:
        if not Path(args.config).exists():
            raise FileNotFoundError(f"配置文件不存在: {args.config}")
        print(f"\n加载配置文件: {args.config}")
        config = ConfigManager.merge_configs(config, ConfigManager.load_config(args.config))

    if args.marker:
        config['marker']['image'] = args.marker
    if args.marker_size is not None:
        config['marker']['size'] = args.marker_size
    if args.source is not None:
        config.setdefault('input', {})['source'] = int(args.source) if args.source.isdigit() else args.source
    if args.no_vis:
        config['visualization'] = False

    if not ConfigManager.validate_config(config):
        raise ValueError("配置无效，请检查日志中的警告")
    return config


def make_key_handler(system, renderer):
    """窗口按键回调：o 设原点，r 重置，q 退出"""

    def on_frame(frame, result):
        features = system.visual_odometry.map_points if system.visual_odometry is not None else None
        renderer.set_frame(frame, system.session.intrinsics, result, features)
        key = renderer.render() & 0xFF
        if key == ord('o'):
            if system.set_world_origin():
                print("世界原点已设置")
        elif key == ord('r'):
            system.reset()
            print("跟踪状态已重置")
        elif key == ord('q'):
            return False
        return True

    return on_frame


def main(argv=None):
    args = parse_args(argv)

    print("=" * 60)
    print("Marker Anchor - 平面标记锚定系统")
    print("=" * 60)

    try:
        import cv2
        from marker_anchor.core.anchor_system import MarkerAnchorSystem
        from marker_anchor.utils.visualization import OverlayRenderer

        print(f"  OpenCV: {cv2.__version__}")
        config = build_config(args)

        # 显示主要配置
        print("\n主要配置:")
        print(f"  输入源: {config.get('input', {}).get('source', 'unknown')}")
        print(f"  标记图像: {config['marker'].get('image')}")
        print(f"  标记尺寸: {config['marker'].get('size')} m")
        print(f"  可视化: {config.get('visualization', False)}")

        renderer = OverlayRenderer() if config.get('visualization', True) else None
        system = MarkerAnchorSystem(config, save_dir=args.save_dir, renderer=renderer)

        print("\n" + "=" * 60)
        print("开始处理...")
        print("按 Ctrl+C 停止系统")
        print("=" * 60)

        callback = make_key_handler(system, renderer) if renderer is not None else None
        system.run(max_frames=args.max_frames, frame_callback=callback)

        status = system.get_status()
        print("\n运行摘要:")
        for key, value in status.items():
            print(f"  {key}: {value}")

    except KeyboardInterrupt:
        print("\n\n用户中断，正在关闭系统...")
        return 0
    except (FileNotFoundError, ValueError, RuntimeError) as e:
        print(f"\n错误: {e}")
        return 1

    print("\n系统正常退出")
    return 0


if __name__ == "__main__":
    sys.exit(main())
