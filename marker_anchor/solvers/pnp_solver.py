"""
PnP求解器
基于OpenCV的标记位姿估计，带指数平滑和世界原点
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

import cv2
import numpy as np

from ..utils.data_structures import Intrinsics, Pose
from .geometry_utils import (
    rotation_matrix_to_euler,
    euler_to_rotation_matrix,
    smooth_value,
    smooth_angle,
    wrap_angle,
    compute_reprojection_error,
)


@dataclass
class PoseSession:
    """位姿会话状态：内参、平滑历史和世界原点"""
    intrinsics: Optional[Intrinsics] = None
    raw_pose: Optional[Pose] = None         # 最近一次未平滑的位姿
    smoothed_pose: Optional[Pose] = None    # 平滑基准
    world_origin: Optional[Pose] = None

    @property
    def initialized(self) -> bool:
        return self.intrinsics is not None


class PoseSolver:
    """OpenCV PnP求解器"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.smoothing_alpha = config.get('smoothing_alpha', 0.85)
        self.pnp_method = config.get('pnp_method', 'SOLVEPNP_ITERATIVE')
        self.logger = logging.getLogger('MarkerAnchor.PoseSolver')

        if not 0.0 <= self.smoothing_alpha < 1.0:
            raise ValueError(f"smoothing_alpha must be in [0, 1), got {self.smoothing_alpha}")

    def init_intrinsics(self, session: PoseSession, width: int, height: int) -> Intrinsics:
        """根据分辨率初始化内参，分辨率变化时可重复调用"""
        session.intrinsics = Intrinsics.from_resolution(width, height)
        self.logger.info(f"Intrinsics initialized for {width}x{height}: "
                         f"f={session.intrinsics.fx:.1f}, "
                         f"c=({session.intrinsics.cx:.1f}, {session.intrinsics.cy:.1f})")
        return session.intrinsics

    def solve_pose(self, session: PoseSession, image_points: np.ndarray,
                   object_points: np.ndarray) -> Optional[Pose]:
        """
        由4组2D-3D对应点求解平滑后的位姿

        Args:
            session: 位姿会话
            image_points: 图像点 [4, 2]
            object_points: 标记坐标系3D点 [4, 3]

        Returns:
            相对世界原点的平滑位姿；求解失败返回 None
        """
        if not session.initialized:
            self.logger.warning("Pose system not initialized")
            return None

        raw_pose = self._solve_raw(session.intrinsics, image_points, object_points)
        if raw_pose is None:
            return None

        session.raw_pose = raw_pose
        smoothed = self._smooth(session.smoothed_pose, raw_pose)
        session.smoothed_pose = smoothed

        return self._apply_world_origin(session.world_origin, smoothed)

    def set_world_origin(self, session: PoseSession) -> bool:
        """以当前平滑位姿作为世界原点"""
        if session.smoothed_pose is None:
            self.logger.warning("Cannot set world origin before the first pose")
            return False

        session.world_origin = session.smoothed_pose.copy()
        self.logger.info(f"World origin set: position={np.round(session.world_origin.position, 4).tolist()}")
        return True

    def clear_world_origin(self, session: PoseSession):
        session.world_origin = None

    def reset(self, session: PoseSession):
        """清除平滑历史和世界原点（保留内参）"""
        session.raw_pose = None
        session.smoothed_pose = None
        session.world_origin = None

    def _solve_raw(self, intrinsics: Intrinsics, image_points: np.ndarray,
                   object_points: np.ndarray) -> Optional[Pose]:
        """执行PnP，返回未平滑的位姿"""
        method_map = {
            'SOLVEPNP_ITERATIVE': cv2.SOLVEPNP_ITERATIVE,
            'SOLVEPNP_EPNP': cv2.SOLVEPNP_EPNP,
            'SOLVEPNP_IPPE': cv2.SOLVEPNP_IPPE,
            'SOLVEPNP_IPPE_SQUARE': cv2.SOLVEPNP_IPPE_SQUARE,
        }
        method = method_map.get(self.pnp_method, cv2.SOLVEPNP_ITERATIVE)

        img_pts = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
        obj_pts = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
        if len(img_pts) != len(obj_pts) or len(img_pts) < 4:
            self.logger.debug(f"Invalid correspondence count: {len(img_pts)} image / {len(obj_pts)} object")
            return None

        camera_matrix = intrinsics.camera_matrix
        dist_coeffs = intrinsics.dist_coeffs

        try:
            success, rvec, tvec = cv2.solvePnP(
                obj_pts, img_pts, camera_matrix, dist_coeffs, flags=method
            )
        except cv2.error as e:
            self.logger.debug(f"solvePnP failed: {e}")
            return None

        if not success or rvec is None or tvec is None:
            self.logger.debug("solvePnP did not converge")
            return None

        R, _ = cv2.Rodrigues(rvec)
        yaw, pitch, roll = rotation_matrix_to_euler(R)
        error = compute_reprojection_error(obj_pts, img_pts, rvec, tvec, camera_matrix, dist_coeffs)

        return Pose(
            position=self._normalize_translation(tvec),
            rotation_matrix=R,
            yaw=yaw,
            pitch=pitch,
            roll=roll,
            reprojection_error=error
        )

    @staticmethod
    def _normalize_translation(tvec: np.ndarray) -> np.ndarray:
        """相机Y向下转为渲染器Y向上，全系统唯一的Y翻转"""
        t = np.asarray(tvec, dtype=np.float64).reshape(3)
        return np.array([t[0], -t[1], t[2]], dtype=np.float64)

    def _smooth(self, prev: Optional[Pose], raw: Pose) -> Pose:
        """位置与欧拉角逐分量EMA，首帧直接通过"""
        if prev is None:
            return raw.copy()

        alpha = self.smoothing_alpha
        position = np.array([
            smooth_value(prev.position[i], raw.position[i], alpha) for i in range(3)
        ])
        yaw = smooth_angle(prev.yaw, raw.yaw, alpha)
        pitch = smooth_angle(prev.pitch, raw.pitch, alpha)
        roll = smooth_angle(prev.roll, raw.roll, alpha)

        return Pose(
            position=position,
            rotation_matrix=euler_to_rotation_matrix(yaw, pitch, roll),
            yaw=yaw,
            pitch=pitch,
            roll=roll,
            reprojection_error=raw.reprojection_error
        )

    @staticmethod
    def _apply_world_origin(origin: Optional[Pose], pose: Pose) -> Pose:
        if origin is None:
            return pose.copy()

        yaw = wrap_angle(pose.yaw - origin.yaw)
        pitch = wrap_angle(pose.pitch - origin.pitch)
        roll = wrap_angle(pose.roll - origin.roll)
        return Pose(
            position=pose.position - origin.position,
            rotation_matrix=euler_to_rotation_matrix(yaw, pitch, roll),
            yaw=yaw,
            pitch=pitch,
            roll=roll,
            reprojection_error=pose.reprojection_error
        )
