"""
可视化工具
OpenCV 叠加绘制（标记角点、锚点坐标轴、跟踪特征）和 matplotlib 轨迹/点云图
"""

import cv2
import time
import numpy as np
from pathlib import Path
from typing import List, Optional, Tuple, Sequence
from collections import deque
import matplotlib.pyplot as plt
from mpl_toolkits.mplot3d import Axes3D  # noqa: F401  注册3d投影

from ..core.video_stream_manager import AnchorRenderer
from .data_structures import AnchorPose, Intrinsics, FrameResult


def draw_marker_overlay(image: np.ndarray, corners: np.ndarray,
                        color: Tuple[int, int, int] = (0, 255, 0), thickness: int = 2) -> np.ndarray:
    """绘制标记四边形，TL角点单独标出"""
    pts = np.round(np.asarray(corners, dtype=np.float32).reshape(-1, 2)).astype(np.int32)
    cv2.polylines(image, [pts.reshape(-1, 1, 2)], True, color, thickness)
    cv2.circle(image, tuple(int(v) for v in pts[0]), 5, (0, 0, 255), -1)
    return image


def draw_features(image: np.ndarray, points: np.ndarray,
                  color: Tuple[int, int, int] = (255, 200, 0)) -> np.ndarray:
    """绘制里程计跟踪的特征点"""
    for x, y in np.asarray(points, dtype=np.float32).reshape(-1, 2):
        cv2.circle(image, (int(round(x)), int(round(y))), 2, color, -1)
    return image


def draw_anchor_axes(image: np.ndarray, anchor: AnchorPose, intrinsics: Intrinsics,
                     axis_length: float = 0.05) -> np.ndarray:
    """
    在图像上绘制锚点坐标轴

    锚点位置已做Y轴翻转，投影前还原到相机坐标系
    """
    position = np.asarray(anchor.position, dtype=np.float64).reshape(3)
    tvec = np.array([position[0], -position[1], position[2]], dtype=np.float64)
    if tvec[2] <= 1e-6:
        return image

    rvec, _ = cv2.Rodrigues(np.asarray(anchor.rotation_matrix, dtype=np.float64))
    axis_points = np.float64([
        [0, 0, 0],
        [axis_length, 0, 0],
        [0, axis_length, 0],
        [0, 0, -axis_length]
    ])
    projected, _ = cv2.projectPoints(axis_points, rvec, tvec,
                                     intrinsics.camera_matrix, intrinsics.dist_coeffs)
    projected = projected.reshape(-1, 2)
    if not np.all(np.isfinite(projected)):
        return image

    origin = tuple(int(round(v)) for v in projected[0])
    colors = [(0, 0, 255), (0, 255, 0), (255, 0, 0)]  # X红 Y绿 Z蓝
    for point, color in zip(projected[1:], colors):
        cv2.line(image, origin, tuple(int(round(v)) for v in point), color, 3)
    return image


def draw_info_panel(image: np.ndarray, lines: Sequence[str]) -> np.ndarray:
    """左上角文字信息"""
    y_offset = 25
    line_height = 22
    for i, line in enumerate(lines):
        cv2.putText(image, line, (10, y_offset + i * line_height),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 255, 255), 2)
    return image


class OverlayRenderer(AnchorRenderer):
    """OpenCV调试窗口：显示相机帧、标记角点、锚点坐标轴和跟踪特征"""

    def __init__(self, window_name: str = "Marker Anchor", show_features: bool = True,
                 axis_length: float = 0.05):
        self.window_name = window_name
        self.show_features = show_features
        self.axis_length = axis_length

        self.intrinsics: Optional[Intrinsics] = None
        self.frame: Optional[np.ndarray] = None
        self.result: Optional[FrameResult] = None
        self.features: Optional[np.ndarray] = None
        self.anchor: Optional[AnchorPose] = None

        self.frame_times = deque(maxlen=30)
        self.current_fps = 0.0
        self.window_created = False

    def set_frame(self, frame: np.ndarray, intrinsics: Optional[Intrinsics],
                  result: Optional[FrameResult] = None, features: Optional[np.ndarray] = None):
        """更新待绘制的帧和本帧结果"""
        self.frame = frame
        self.intrinsics = intrinsics
        self.result = result
        self.features = features

    def set_anchor_pose(self, anchor: Optional[AnchorPose]):
        self.anchor = anchor

    def compose(self) -> Optional[np.ndarray]:
        """生成叠加后的图像"""
        if self.frame is None:
            return None

        canvas = self.frame.copy()
        if canvas.ndim == 2:
            canvas = cv2.cvtColor(canvas, cv2.COLOR_GRAY2BGR)

        if self.show_features and self.features is not None and len(self.features):
            draw_features(canvas, self.features)

        result = self.result
        if result is not None and result.detection is not None:
            color = (0, 255, 0) if result.detection.method == 'detect' else (0, 200, 255)
            draw_marker_overlay(canvas, result.detection.corners, color)

        lines = [f"FPS: {self.current_fps:.1f}"]
        if self.anchor is not None and self.intrinsics is not None:
            draw_anchor_axes(canvas, self.anchor, self.intrinsics, self.axis_length)
            x, y, z = self.anchor.position
            yaw, pitch, roll = np.degrees(self.anchor.euler)
            lines.append(f"Anchor [{self.anchor.source}]: {x:+.3f} {y:+.3f} {z:+.3f} m")
            lines.append(f"Yaw/Pitch/Roll: {yaw:+.1f} {pitch:+.1f} {roll:+.1f}")
        else:
            lines.append("Anchor: none")
        if result is not None and result.marker_rejected:
            lines.append("Marker pose rejected (jump)")

        return draw_info_panel(canvas, lines)

    def render(self, wait_ms: int = 1) -> int:
        """显示一帧，返回按键码（无按键为 -1）"""
        self._update_fps()
        canvas = self.compose()
        if canvas is None:
            return -1
        if not self.window_created:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self.window_created = True
        cv2.imshow(self.window_name, canvas)
        return cv2.waitKey(wait_ms)

    def save_screenshot(self, save_path: str):
        canvas = self.compose()
        if canvas is not None:
            cv2.imwrite(save_path, canvas)

    def _update_fps(self):
        self.frame_times.append(time.time())
        if len(self.frame_times) > 1:
            span = self.frame_times[-1] - self.frame_times[0]
            if span > 0:
                self.current_fps = (len(self.frame_times) - 1) / span

    def close(self):
        if self.window_created:
            cv2.destroyWindow(self.window_name)
            self.window_created = False


def plot_trajectory(positions: List[np.ndarray], sources: Optional[List[str]] = None,
                    save_path: Optional[str] = None) -> plt.Figure:
    """
    绘制锚点轨迹

    Args:
        positions: 锚点位置列表 (3,)
        sources: 每个位置的来源 ('marker' / 'odometry')，用于着色
        save_path: 保存路径

    Returns:
        fig: matplotlib图形对象
    """
    fig = plt.figure(figsize=(12, 8))

    if len(positions) > 0:
        pts = np.array([np.asarray(p, dtype=np.float64).reshape(3) for p in positions])
        if sources is None:
            sources = ['marker'] * len(pts)
        is_marker = np.array([s == 'marker' for s in sources])

        # X-Y 平面
        ax1 = fig.add_subplot(221)
        ax1.plot(pts[:, 0], pts[:, 1], 'b-', alpha=0.5)
        ax1.scatter(pts[is_marker, 0], pts[is_marker, 1], c='g', s=8, label='Marker')
        ax1.scatter(pts[~is_marker, 0], pts[~is_marker, 1], c='r', s=8, label='Odometry')
        ax1.set_xlabel('X (m)')
        ax1.set_ylabel('Y (m)')
        ax1.set_title('Anchor Trajectory (Front View)')
        ax1.legend()
        ax1.grid(True)
        ax1.axis('equal')

        ax2 = fig.add_subplot(222, projection='3d')
        ax2.plot(pts[:, 0], pts[:, 1], pts[:, 2], 'b-')
        ax2.set_xlabel('X (m)')
        ax2.set_ylabel('Y (m)')
        ax2.set_zlabel('Z (m)')
        ax2.set_title('3D Anchor Trajectory')

        # X-Z 俯视
        ax3 = fig.add_subplot(223)
        ax3.plot(pts[:, 0], pts[:, 2], 'b-')
        ax3.set_xlabel('X (m)')
        ax3.set_ylabel('Z (m)')
        ax3.set_title('Anchor Trajectory (Top View)')
        ax3.grid(True)

        # 距离变化
        ax4 = fig.add_subplot(224)
        ax4.plot(np.linalg.norm(pts, axis=1), 'g-')
        ax4.set_xlabel('Frame')
        ax4.set_ylabel('Distance (m)')
        ax4.set_title('Anchor Distance to Camera')
        ax4.grid(True)

    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig


def plot_point_cloud(points: np.ndarray, title: str = "Triangulated Points",
                     save_path: Optional[str] = None) -> plt.Figure:
    """绘制里程计三角化点云"""
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection='3d')

    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points):
        ax.scatter(points[:, 0], points[:, 1], points[:, 2], c=points[:, 2], cmap='viridis', s=2)

    ax.set_title(f"{title} ({len(points)} points)")
    ax.set_xlabel('X')
    ax.set_ylabel('Y')
    ax.set_zlabel('Z')

    if save_path:
        Path(save_path).parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig
