#!/usr/bin/env python3
"""
Marker Anchor 基础使用示例
离线合成序列：标记平移后离开视野，锚点由视觉里程计延续
"""

import sys
from pathlib import Path

import cv2
import numpy as np

# 添加项目路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from marker_anchor import MarkerAnchorSystem, ConfigManager
from marker_anchor.core.video_stream_manager import ImageSequenceSource, RecordingRenderer
from marker_anchor.utils.visualization import plot_trajectory, plot_point_cloud


def make_marker(size=240, seed=7):
    """生成高纹理标记图"""
    rng = np.random.RandomState(seed)
    marker = np.full((size, size, 3), 255, dtype=np.uint8)
    for _ in range(60):
        x0, y0 = rng.randint(0, size - 20, size=2)
        w, h = rng.randint(10, 60, size=2)
        color = tuple(int(c) for c in rng.randint(0, 255, size=3))
        cv2.rectangle(marker, (int(x0), int(y0)), (int(x0 + w), int(y0 + h)), color, -1)
    cv2.rectangle(marker, (0, 0), (size - 1, size - 1), (0, 0, 0), 4)
    return marker


def make_sequence(marker, num_frames=60):
    """标记从左向右移动，后半段移出画面"""
    background = np.random.RandomState(1).randint(60, 160, (480, 640, 3)).astype(np.uint8)
    background = cv2.GaussianBlur(background, (0, 0), 3)
    h, w = marker.shape[:2]
    frames = []
    for i in range(num_frames):
        frame = background.copy()
        x0 = 120 + i * 6
        if x0 + w <= 640:
            frame[120:120 + h, x0:x0 + w] = marker
        frames.append(frame)
    return frames


def basic_anchor_example(save_dir="examples_output"):
    """基础使用示例"""
    print("Basic Marker Anchor Usage Example")
    print("=" * 40)

    save_dir = Path(save_dir)
    save_dir.mkdir(parents=True, exist_ok=True)
    marker = make_marker()
    marker_path = save_dir / "marker.png"
    cv2.imwrite(str(marker_path), marker)

    config = ConfigManager.default_config()
    config['marker']['image'] = str(marker_path)
    config['marker']['size'] = 0.1
    config['visualization'] = False

    renderer = RecordingRenderer()
    system = MarkerAnchorSystem(config, save_dir=str(save_dir), renderer=renderer)
    system.run(capture=ImageSequenceSource(make_sequence(marker)))

    anchors = [a for a in renderer.history if a is not None]
    print(f"Frames: {len(renderer.history)}, anchored: {len(anchors)}")
    print(f"Learned scale: {system.anchor_manager.scale:.4f}")

    if anchors:
        plot_trajectory([a.position for a in anchors], [a.source for a in anchors],
                        save_path=str(save_dir / "trajectory.png"))
    if system.visual_odometry is not None:
        plot_point_cloud(system.visual_odometry.map_points_3d,
                         save_path=str(save_dir / "point_cloud.png"))
    print(f"Results saved to {save_dir}")


def component_usage_example():
    """组件单独使用示例"""
    print("\nComponent Usage Example")
    print("=" * 40)

    from marker_anchor.frontend.marker_tracker import MarkerTracker
    from marker_anchor.solvers.pnp_solver import PoseSolver, PoseSession
    from marker_anchor.solvers.geometry_utils import marker_object_points

    marker = make_marker()
    frame = make_sequence(marker, num_frames=1)[0]
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)

    tracker = MarkerTracker(ConfigManager.default_config()['marker_tracker'])
    tracker.load_template(marker)
    detection = tracker.detect(gray)
    if detection is None:
        print("Marker not found")
        return

    solver = PoseSolver({'smoothing_alpha': 0.85})
    session = PoseSession()
    solver.init_intrinsics(session, gray.shape[1], gray.shape[0])
    pose = solver.solve_pose(session, detection.corners, marker_object_points(0.1))
    print(f"Corners: {np.round(detection.corners, 1).tolist()}")
    print(f"Position (m): {np.round(pose.position, 4).tolist()}")
    print(f"Yaw/Pitch/Roll (deg): {np.round(np.degrees(pose.euler), 2).tolist()}")


if __name__ == "__main__":
    basic_anchor_example()
    component_usage_example()
