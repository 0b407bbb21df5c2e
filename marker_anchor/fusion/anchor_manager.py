"""
融合与锚点管理
融合度量标记位姿和无尺度里程计增量：学习尺度、拒绝跳变、遮挡时传播锚点
"""

import logging
from typing import Dict, Any, Optional

import numpy as np

from ..solvers.geometry_utils import rotation_matrix_to_euler, euler_to_rotation_matrix, wrap_angle
from ..utils.data_structures import Pose, OdometryDelta, AnchorPose

# 相机坐标系 (Y向下) 与渲染器约定 (Y向上) 之间的翻转
Y_FLIP = np.diag([1.0, -1.0, 1.0])


def pose_jump_too_large(prev: Pose, next_pose: Pose, max_jump: float = 0.25) -> bool:
    """两位姿位置距离严格大于阈值时为跳变（恰好等于阈值不拒绝）"""
    return prev.distance_to(next_pose) > max_jump


class AnchorManager:
    """锚点管理器，每帧在其它组件之后运行一次"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.max_jump = config.get('max_jump', 0.25)
        self.scale_alpha = config.get('scale_alpha', 0.9)
        self.min_displacement = config.get('min_displacement', 1e-4)
        self.min_odometry_norm = config.get('min_odometry_norm', 1e-6)
        self.lockout_warning_frames = config.get('lockout_warning_frames', 30)
        self.logger = logging.getLogger('MarkerAnchor.AnchorManager')
        self.reset()

    def reset(self):
        self._scale = 0.0
        self._last_marker_pose: Optional[Pose] = None
        self._prev_frame_accepted = False
        self._anchor: Optional[AnchorPose] = None
        self.rejected_count = 0
        self.consecutive_rejections = 0
        self.last_rejected = False

    @property
    def scale(self) -> float:
        return self._scale

    @property
    def last_marker_pose(self) -> Optional[Pose]:
        return self._last_marker_pose

    @property
    def anchor(self) -> Optional[AnchorPose]:
        return self._anchor

    def update(self, marker_pose: Optional[Pose],
               odometry: Optional[OdometryDelta]) -> Optional[AnchorPose]:
        """
        融合一帧

        Args:
            marker_pose: 本帧求解的度量位姿（可为 None）
            odometry: 本帧里程计相对运动（可为 None）

        Returns:
            新的锚点位姿；标记从未出现且无历史锚点时返回 None
        """
        accepted = self._accept(marker_pose)

        if accepted is not None:
            previous = self._last_marker_pose
            if odometry is not None and previous is not None and self._prev_frame_accepted:
                self._update_scale(previous, accepted, odometry)

            self._last_marker_pose = accepted.copy()
            self._anchor = AnchorPose.from_pose(accepted)
        elif self._anchor is not None and odometry is not None:
            self._anchor = self._propagate(self._anchor, odometry)

        self._prev_frame_accepted = accepted is not None
        return self._anchor

    def rebase(self, position_offset: np.ndarray, euler_offset: np.ndarray):
        """
        世界原点变化后，将已保存的标记位姿和锚点改写到新原点下

        Args:
            position_offset: 新原点相对旧原点的位置偏移 [3]
            euler_offset: 新原点相对旧原点的 (yaw, pitch, roll) 偏移
        """
        position_offset = np.asarray(position_offset, dtype=np.float64).reshape(3)
        dyaw, dpitch, droll = np.asarray(euler_offset, dtype=np.float64).reshape(3)

        if self._last_marker_pose is not None:
            pose = self._last_marker_pose
            yaw = wrap_angle(pose.yaw - dyaw)
            pitch = wrap_angle(pose.pitch - dpitch)
            roll = wrap_angle(pose.roll - droll)
            self._last_marker_pose = Pose(
                position=pose.position - position_offset,
                rotation_matrix=euler_to_rotation_matrix(yaw, pitch, roll),
                yaw=yaw,
                pitch=pitch,
                roll=roll,
                reprojection_error=pose.reprojection_error
            )

        if self._anchor is not None:
            yaw, pitch, roll = rotation_matrix_to_euler(self._anchor.rotation_matrix)
            self._anchor = AnchorPose(
                position=self._anchor.position - position_offset,
                rotation_matrix=euler_to_rotation_matrix(
                    wrap_angle(yaw - dyaw), wrap_angle(pitch - dpitch), wrap_angle(roll - droll)),
                source=self._anchor.source
            )
        self.consecutive_rejections = 0

    def _accept(self, marker_pose: Optional[Pose]) -> Optional[Pose]:
        """跳变检测"""
        self.last_rejected = False
        if marker_pose is None:
            return None

        if self._last_marker_pose is not None and pose_jump_too_large(
                self._last_marker_pose, marker_pose, self.max_jump):
            self.rejected_count += 1
            self.consecutive_rejections += 1
            self.last_rejected = True
            jump = self._last_marker_pose.distance_to(marker_pose)
            self.logger.debug(f"Rejected marker pose: jump {jump:.3f}m > {self.max_jump}m")
            if self.consecutive_rejections == self.lockout_warning_frames:
                self.logger.warning(
                    f"Marker pose rejected for {self.consecutive_rejections} consecutive frames "
                    f"(jump {jump:.3f}m from last accepted pose); press reset to re-acquire"
                )
            return None

        self.consecutive_rejections = 0
        return marker_pose

    def _update_scale(self, previous: Pose, current: Pose, odometry: OdometryDelta):
        """尺度EMA：scale = a*scale + (1-a)*(d/|t|)，未知时直接取观测值"""
        displacement = previous.distance_to(current)
        odom_norm = float(np.linalg.norm(odometry.translation))
        if displacement <= self.min_displacement or odom_norm <= self.min_odometry_norm:
            return

        observed = displacement / odom_norm
        if self._scale > 0:
            self._scale = self.scale_alpha * self._scale + (1.0 - self.scale_alpha) * observed
        else:
            self._scale = observed
        self.logger.debug(f"Scale estimate updated: {self._scale:.4f} (observed {observed:.4f})")

    def _propagate(self, anchor: AnchorPose, odometry: OdometryDelta) -> AnchorPose:
        """
        p' = R_r p + s t_r, R' = R R_anchor；尺度未知时只旋转

        里程计增量在相机坐标系 (Y向下)，位置已是渲染器约定 (Y向上)，
        因此位置更新使用 R_r = F R F, t_r = F t；旋转矩阵仍在相机坐标系。
        """
        R = odometry.rotation
        R_r = Y_FLIP @ R @ Y_FLIP
        t_r = Y_FLIP @ np.asarray(odometry.translation, dtype=np.float64).reshape(3)
        position = R_r @ anchor.position + self._scale * t_r
        rotation = R @ anchor.rotation_matrix
        return AnchorPose(position=position, rotation_matrix=rotation, source="odometry")
