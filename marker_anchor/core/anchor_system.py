"""
标记锚定系统核心实现
整合标记跟踪、PnP位姿求解、单目视觉里程计和锚点融合
"""

import json
import time
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Callable, List, Tuple

import cv2
import numpy as np

from .video_stream_manager import CaptureSource, VideoCaptureSource, AnchorRenderer
from ..frontend.marker_tracker import MarkerTracker, TemplateLoadError
from ..frontend.visual_odometry import VisualOdometry
from ..fusion.anchor_manager import AnchorManager
from ..solvers.pnp_solver import PoseSolver, PoseSession
from ..solvers.geometry_utils import marker_object_points
from ..utils.capabilities import VisionCapabilities, probe_capabilities, log_capabilities
from ..utils.config_manager import ConfigManager
from ..utils.data_converter import ImageProcessor
from ..utils.data_structures import FrameResult, AnchorPose, MarkerDetection, OdometryDelta
from ..utils.memory_manager import FrameBufferPool
from ..utils.performance_monitor import PerformanceMonitor

FrameCallback = Callable[[np.ndarray, FrameResult], bool]


class MarkerAnchorSystem:
    """标记锚定系统主类：每帧输出一个锚点位姿给渲染器"""

    def __init__(self, config: Dict[str, Any], save_dir: Optional[str] = None,
                 renderer: Optional[AnchorRenderer] = None,
                 capabilities: Optional[VisionCapabilities] = None):
        """初始化系统"""
        self.config = ConfigManager.merge_configs(ConfigManager.default_config(), config or {})
        self.save_dir = Path(save_dir) if save_dir else Path.cwd() / "results"
        self.save_dir.mkdir(parents=True, exist_ok=True)

        self.target_fps = self.config.get('performance_targets', {}).get('target_fps', 30)
        self.renderer = renderer
        self.capture: Optional[CaptureSource] = None

        self._init_logging()
        self.capabilities = capabilities or probe_capabilities()
        log_capabilities(self.capabilities, self.logger)
        self._init_core_components()

        # 状态追踪
        self.frame_index = 0
        self.resolution: Optional[Tuple[int, int]] = None
        self.trajectory: List[Tuple[int, AnchorPose]] = []
        self.last_result: Optional[FrameResult] = None
        self._shutdown_done = False

        self.logger.info(f"MarkerAnchorSystem initialized, saving to {self.save_dir}")

    def _init_logging(self):
        """初始化日志系统"""
        log_file = self.save_dir / "marker_anchor.log"
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[
                logging.FileHandler(log_file),
                logging.StreamHandler()
            ]
        )
        self.logger = logging.getLogger('MarkerAnchor')

    def _init_core_components(self):
        """初始化核心组件，单个组件初始化失败只禁用该组件"""
        marker_config = self.config['marker']
        self.marker_size = float(marker_config.get('size', 0.1))
        self.object_points = marker_object_points(self.marker_size)

        # 位姿求解
        self.pose_solver = PoseSolver(self.config.get('pose_solver', {}))
        self.session = PoseSession()

        # 标记跟踪
        self.marker_tracker: Optional[MarkerTracker] = None
        if self.capabilities.marker_tracking and self.capabilities.pose_solving:
            self.marker_tracker = MarkerTracker(self.config.get('marker_tracker', {}))
            marker_image = marker_config.get('image')
            if marker_image is not None:
                try:
                    self.marker_tracker.load_template(marker_image)
                except TemplateLoadError as e:
                    self.logger.error(f"Marker tracking disabled: {e}")
            else:
                self.logger.warning("No marker image configured, marker tracking disabled")
        else:
            self.logger.warning("Vision library lacks marker tracking primitives, marker tracking disabled")

        # 视觉里程计
        self.visual_odometry: Optional[VisualOdometry] = None
        vo_config = self.config.get('visual_odometry', {})
        odometry_capability = self.capabilities.odometry
        if not vo_config.get('enabled', True):
            self.logger.info("Visual odometry disabled by configuration")
        elif not odometry_capability.available:
            self.logger.warning("Essential/fundamental matrix estimation unavailable, visual odometry disabled")
        else:
            self.visual_odometry = VisualOdometry(vo_config, capability=odometry_capability)
            self.logger.info(f"Visual odometry enabled ({odometry_capability.value} matrix)")

        # 融合
        self.anchor_manager = AnchorManager(self.config.get('fusion', {}))

        # 性能监控
        self.perf_monitor = PerformanceMonitor(target_fps=self.target_fps)

        self._gray_pool = FrameBufferPool()

    @property
    def marker_tracking_enabled(self) -> bool:
        return self.marker_tracker is not None and self.marker_tracker.ready

    @property
    def odometry_enabled(self) -> bool:
        return self.visual_odometry is not None

    @property
    def is_initialized(self) -> bool:
        return self.session.initialized

    def initialize(self, width: int, height: int):
        """由视频分辨率初始化内参（分辨率变化时重新调用）"""
        intrinsics = self.pose_solver.init_intrinsics(self.session, width, height)
        if self.visual_odometry is not None:
            self.visual_odometry.set_intrinsics(intrinsics)
        self.resolution = (width, height)

    def process_frame(self, frame: np.ndarray) -> FrameResult:
        """
        处理一帧

        Args:
            frame: 相机帧（灰度/BGR/BGRA）

        Returns:
            本帧结果，anchor 为 None 时渲染器隐藏虚拟内容
        """
        frame_start = time.time()

        gray = ImageProcessor.to_gray(frame, pool=self._gray_pool)
        height, width = gray.shape[:2]
        if self.resolution != (width, height):
            self.initialize(width, height)

        result = FrameResult(frame_index=self.frame_index)

        # 标记和里程计互相独立
        stage_start = time.time()
        result.detection = self._track_marker(gray)
        self.perf_monitor.log_time('marker', (time.time() - stage_start) * 1000)

        stage_start = time.time()
        result.odometry = self._track_odometry(gray)
        if result.odometry is not None:
            result.map_points_3d = self.visual_odometry.map_points_3d
        self.perf_monitor.log_time('odometry', (time.time() - stage_start) * 1000)

        stage_start = time.time()
        if result.detection is not None:
            result.marker_pose = self.pose_solver.solve_pose(
                self.session, result.detection.corners, self.object_points
            )
        self.perf_monitor.log_time('pose', (time.time() - stage_start) * 1000)

        stage_start = time.time()
        result.anchor = self.anchor_manager.update(result.marker_pose, result.odometry)
        result.marker_rejected = self.anchor_manager.last_rejected
        self.perf_monitor.log_time('fusion', (time.time() - stage_start) * 1000)

        if self.renderer is not None:
            self.renderer.set_anchor_pose(result.anchor)

        if result.anchor is not None:
            self.trajectory.append((self.frame_index, result.anchor))

        result.processing_time = (time.time() - frame_start) * 1000
        result.metadata = {
            'scale': self.anchor_manager.scale,
            'tracking_mode': self.marker_tracker.mode.value if self.marker_tracker is not None else None,
        }
        self.perf_monitor.update_frame_stats(
            processing_time=result.processing_time,
            marker_visible=result.marker_pose is not None and not result.marker_rejected,
            anchor_available=result.anchor is not None
        )

        self.frame_index += 1
        self.last_result = result
        return result

    def _track_marker(self, gray: np.ndarray) -> Optional[MarkerDetection]:
        if not self.marker_tracking_enabled:
            return None
        try:
            return self.marker_tracker.track(gray)
        except cv2.error as e:
            self.logger.debug(f"Marker tracking failed: {e}")
            self.marker_tracker.reset()
            return None

    def _track_odometry(self, gray: np.ndarray) -> Optional[OdometryDelta]:
        if self.visual_odometry is None:
            return None
        try:
            return self.visual_odometry.process_frame(gray)
        except cv2.error as e:
            self.logger.debug(f"Visual odometry failed: {e}")
            self.visual_odometry.reset()
            return None

    def set_world_origin(self) -> bool:
        """
        以当前平滑位姿作为世界原点（UI"归零"操作）

        融合状态同步改写到新原点下，否则下一帧位姿会被当作跳变拒绝
        """
        previous_origin = self.session.world_origin
        if not self.pose_solver.set_world_origin(self.session):
            return False

        origin = self.session.world_origin
        position_offset = origin.position.copy()
        euler_offset = origin.euler
        if previous_origin is not None:
            position_offset -= previous_origin.position
            euler_offset = euler_offset - previous_origin.euler
        self.anchor_manager.rebase(position_offset, euler_offset)
        return True

    def reset(self):
        """清除所有跟踪状态（保留模板和内参）"""
        if self.marker_tracker is not None:
            self.marker_tracker.reset()
        if self.visual_odometry is not None:
            self.visual_odometry.reset()
        self.pose_solver.reset(self.session)
        self.anchor_manager.reset()
        self.logger.info("Tracking state reset")

    def run(self, capture: Optional[CaptureSource] = None, max_frames: Optional[int] = None,
            frame_callback: Optional[FrameCallback] = None):
        """
        运行主循环

        Args:
            capture: 采集源，缺省时按配置 input.source 打开
            max_frames: 最多处理的帧数
            frame_callback: 每帧回调 (frame, result)，返回 False 时停止
        """
        try:
            self.logger.info("Starting Marker Anchor System...")
            self.capture = capture or self._create_capture()
            width, height = self.capture.resolution
            if width > 0 and height > 0:
                self.initialize(width, height)

            self._main_processing_loop(max_frames, frame_callback)

        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
        finally:
            self.shutdown()

    def _create_capture(self) -> CaptureSource:
        input_config = self.config.get('input', {})
        resolution = input_config.get('resolution')
        return VideoCaptureSource(
            input_config.get('source', 0),
            resolution=tuple(resolution) if resolution else None,
            fps=input_config.get('fps')
        )

    def _main_processing_loop(self, max_frames: Optional[int], frame_callback: Optional[FrameCallback]):
        """主处理循环"""
        processed = 0
        while max_frames is None or processed < max_frames:
            frame = self.capture.read()
            if frame is None:
                self.logger.info("Capture source exhausted")
                break

            result = self.process_frame(frame)
            processed += 1

            if processed % 100 == 0:
                stats = self.perf_monitor.get_real_time_stats()
                self.logger.info(
                    f"Frame {result.frame_index}: FPS {stats['fps']:.1f}, "
                    f"anchor rate {stats.get('anchor_available_rate', 0.0):.1%}, "
                    f"scale {self.anchor_manager.scale:.4f}"
                )
                for warning in self.perf_monitor.check_performance_warnings():
                    self.logger.warning(warning)

            if frame_callback is not None and frame_callback(frame, result) is False:
                break

        self.logger.info(f"Main processing loop completed after {processed} frames")

    def get_status(self) -> Dict[str, Any]:
        """系统状态摘要"""
        return {
            'frames': self.frame_index,
            'marker_tracking': self.marker_tracking_enabled,
            'odometry': self.odometry_enabled,
            'scale': self.anchor_manager.scale,
            'rejected_marker_poses': self.anchor_manager.rejected_count,
            'world_origin_set': self.session.world_origin is not None,
            'trajectory_points': len(self.trajectory),
        }

    def shutdown(self):
        """关闭系统：保存结果并释放资源"""
        if self._shutdown_done:
            return
        self._shutdown_done = True
        self.logger.info("Shutting down Marker Anchor System...")

        self._save_final_results()

        if self.capture is not None:
            self.capture.release()
        if self.renderer is not None:
            self.renderer.close()
        if self.marker_tracker is not None:
            self.marker_tracker.close()

        self.logger.info("Shutdown completed")

    def _save_final_results(self):
        """保存轨迹和性能报告"""
        output_config = self.config.get('output', {})

        if output_config.get('save_trajectory', True) and self.trajectory:
            self.save_trajectory(self.save_dir / "trajectory.txt")

        if output_config.get('save_performance_report', True):
            report_file = self.save_dir / "performance_report.json"
            report = self.perf_monitor.generate_report()
            report['system'] = self.get_status()
            with open(report_file, 'w') as f:
                json.dump(report, f, indent=2)
            self.logger.info(f"Performance report saved to {report_file}")

    def save_trajectory(self, path: Path):
        """保存锚点轨迹：index x y z yaw pitch roll source"""
        with open(path, 'w') as f:
            f.write("# index x y z yaw pitch roll source\n")
            for index, anchor in self.trajectory:
                x, y, z = np.asarray(anchor.position, dtype=np.float64).reshape(3)
                yaw, pitch, roll = anchor.euler
                f.write(f"{index} {x:.6f} {y:.6f} {z:.6f} "
                        f"{yaw:.6f} {pitch:.6f} {roll:.6f} {anchor.source}\n")
        self.logger.info(f"Trajectory saved to {path} ({len(self.trajectory)} poses)")

    @classmethod
    def from_config_file(cls, config_path: str, save_dir: Optional[str] = None, **kwargs):
        """从配置文件创建系统"""
        config = ConfigManager.load_config(config_path)
        return cls(config, save_dir, **kwargs)
