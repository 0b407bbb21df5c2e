"""
单目视觉里程计
稀疏光流跟踪通用特征点，由本质矩阵恢复帧间相对运动（平移仅有方向），并三角化瞬时点云
"""

import logging
from typing import Dict, Any, Optional, Tuple

import cv2
import numpy as np

from ..core.base_tracker import BaseTracker
from ..solvers.geometry_utils import triangulate_points
from ..utils.capabilities import OdometryCapability
from ..utils.data_converter import ImageProcessor
from ..utils.memory_manager import FrameBufferPool
from ..utils.data_structures import Intrinsics, OdometryDelta


class VisualOdometry(BaseTracker):
    """帧到帧单目视觉里程计"""

    def __init__(self, config: Dict[str, Any], intrinsics: Optional[Intrinsics] = None,
                 capability: OdometryCapability = OdometryCapability.ESSENTIAL):
        super().__init__(config)
        if not capability.available:
            raise ValueError("Visual odometry requires essential or fundamental matrix estimation")

        self.capability = capability
        self.intrinsics = intrinsics

        # 特征检测参数
        self.max_corners = config.get('max_corners', 300)
        self.quality_level = config.get('quality_level', 0.01)
        self.min_distance = config.get('min_distance', 10)
        self.min_tracked = config.get('min_tracked', 16)

        # 鲁棒估计参数
        self.ransac_prob = config.get('ransac_prob', 0.999)
        self.ransac_threshold = config.get('ransac_threshold', 1.0)
        self.fundamental_threshold = config.get('fundamental_threshold', 3.0)
        self.fundamental_confidence = config.get('fundamental_confidence', 0.99)

        # 三角化过滤
        self.min_homogeneous_weight = config.get('min_homogeneous_weight', 1e-8)
        self.max_point_magnitude = config.get('max_point_magnitude', 100.0)

        win_size = config.get('lk_win_size', 21)
        self.lk_params = dict(
            winSize=(win_size, win_size),
            maxLevel=config.get('lk_max_level', 3),
            criteria=(cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 30, 0.01)
        )

        self.logger = logging.getLogger('MarkerAnchor.VisualOdometry')
        self._pool = FrameBufferPool()
        self.reset()

    def reset(self):
        """清除累计位姿和跟踪状态"""
        self.cumulative_rotation = np.eye(3, dtype=np.float64)
        self.cumulative_translation = np.zeros(3, dtype=np.float64)
        self.prev_gray: Optional[np.ndarray] = None
        self.prev_points = np.zeros((0, 2), dtype=np.float32)
        self.map_points = np.zeros((0, 2), dtype=np.float32)      # 当前跟踪的2D特征（调试用）
        self.map_points_3d = np.zeros((0, 3), dtype=np.float64)   # 最近一次三角化结果
        self.initialized = False
        self.last_delta: Optional[OdometryDelta] = None
        self._pool.clear()

    def set_intrinsics(self, intrinsics: Intrinsics):
        self.intrinsics = intrinsics

    @property
    def cumulative_pose(self) -> np.ndarray:
        """4x4 累计位姿（平移无尺度，仅供诊断）"""
        pose = np.eye(4, dtype=np.float64)
        pose[:3, :3] = self.cumulative_rotation
        pose[:3, 3] = self.cumulative_translation
        return pose

    def track(self, frame: np.ndarray) -> Optional[OdometryDelta]:
        return self.process_frame(frame)

    def is_tracking_reliable(self) -> bool:
        return self.initialized and len(self.prev_points) >= self.min_tracked

    def process_frame(self, frame: np.ndarray) -> Optional[OdometryDelta]:
        """
        处理一帧

        Args:
            frame: 灰度或彩色帧

        Returns:
            上一帧到当前帧的相对运动；首帧、对应点不足或求解失败时返回 None
        """
        gray = ImageProcessor.to_gray(frame, pool=self._pool)
        if self.intrinsics is None:
            height, width = gray.shape[:2]
            self.intrinsics = Intrinsics.from_resolution(width, height)

        self.last_delta = None

        if not self.initialized or self.prev_gray is None or self.prev_gray.shape != gray.shape:
            self._seed(gray)
            self.initialized = True
            return None

        good_prev, good_curr = self._track_features(self.prev_gray, gray, self.prev_points)

        if len(good_prev) < self.min_tracked:
            self.logger.debug(f"Only {len(good_prev)} tracked features, re-seeding")
            self.map_points_3d = np.zeros((0, 3), dtype=np.float64)
            self._seed(gray)
            return None

        try:
            delta = self._estimate_motion(good_prev, good_curr)
        except cv2.error as e:
            self.logger.debug(f"Relative pose estimation failed: {e}")
            delta = None

        if delta is None:
            # 保留累计位姿，从当前帧重新开始
            self.map_points_3d = np.zeros((0, 3), dtype=np.float64)
            self._seed(gray, good_curr)
            return None

        self.cumulative_rotation = delta.rotation @ self.cumulative_rotation
        self.cumulative_translation = self.cumulative_translation + delta.translation

        try:
            self.map_points_3d = triangulate_points(
                self.intrinsics.camera_matrix, delta.rotation, delta.translation,
                good_prev, good_curr,
                min_weight=self.min_homogeneous_weight,
                max_magnitude=self.max_point_magnitude
            )
        except cv2.error as e:
            self.logger.debug(f"Triangulation failed: {e}")
            self.map_points_3d = np.zeros((0, 3), dtype=np.float64)

        self._seed(gray, good_curr)
        self.last_delta = delta
        return delta

    def _estimate_motion(self, pts_prev: np.ndarray, pts_curr: np.ndarray) -> Optional[OdometryDelta]:
        """本质矩阵（或基础矩阵回退）+ recoverPose"""
        K = self.intrinsics.camera_matrix
        p0 = np.asarray(pts_prev, dtype=np.float64).reshape(-1, 2)
        p1 = np.asarray(pts_curr, dtype=np.float64).reshape(-1, 2)

        if self.capability == OdometryCapability.ESSENTIAL:
            E, mask = cv2.findEssentialMat(
                p0, p1,
                cameraMatrix=K,
                method=cv2.RANSAC,
                prob=self.ransac_prob,
                threshold=self.ransac_threshold
            )
        else:
            F, mask = cv2.findFundamentalMat(
                p0, p1, cv2.FM_RANSAC,
                self.fundamental_threshold, self.fundamental_confidence
            )
            E = None if F is None or F.shape[0] < 3 else K.T @ F[:3, :3] @ K

        if E is None or mask is None:
            self.logger.debug("Essential matrix estimation returned no solution")
            return None

        # 可能返回多个 3x3 解，取第一个
        if E.shape != (3, 3):
            E = E[:3, :3]
        if not np.all(np.isfinite(E)):
            return None

        retval, R, t, _ = cv2.recoverPose(E, p0, p1, cameraMatrix=K, mask=mask.copy())
        if retval is None or int(retval) <= 0:
            self.logger.debug("recoverPose found no points in front of both cameras")
            return None

        t = np.asarray(t, dtype=np.float64).reshape(3)
        norm = np.linalg.norm(t)
        if not np.isfinite(norm) or norm < 1e-12:
            return None

        return OdometryDelta(rotation=np.asarray(R, dtype=np.float64),
                             translation=t / norm,
                             num_inliers=int(retval))

    def _track_features(self, prev_gray: np.ndarray, gray: np.ndarray,
                        prev_points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """光流跟踪，丢弃失败的点"""
        empty = np.zeros((0, 2), dtype=np.float32)
        if prev_points is None or len(prev_points) == 0:
            return empty, empty

        try:
            next_pts, status, _ = cv2.calcOpticalFlowPyrLK(
                prev_gray, gray,
                prev_points.reshape(-1, 1, 2).astype(np.float32),
                None,
                **self.lk_params
            )
        except cv2.error as e:
            self.logger.debug(f"calcOpticalFlowPyrLK failed: {e}")
            return empty, empty

        if next_pts is None or status is None:
            return empty, empty

        next_pts = next_pts.reshape(-1, 2)
        good = (status.reshape(-1) == 1) & np.all(np.isfinite(next_pts), axis=1)
        return prev_points.reshape(-1, 2)[good], next_pts[good]

    def _detect_features(self, gray: np.ndarray, max_corners: int,
                         mask: Optional[np.ndarray] = None) -> np.ndarray:
        """Shi-Tomasi 角点"""
        if max_corners <= 0:
            return np.zeros((0, 2), dtype=np.float32)
        corners = cv2.goodFeaturesToTrack(
            gray,
            maxCorners=max_corners,
            qualityLevel=self.quality_level,
            minDistance=self.min_distance,
            mask=mask
        )
        if corners is None:
            return np.zeros((0, 2), dtype=np.float32)
        return corners.reshape(-1, 2).astype(np.float32)

    def _seed(self, gray: np.ndarray, tracked: Optional[np.ndarray] = None):
        """以当前帧为参考：保留跟踪成功的点并补充新检测的点"""
        if tracked is None or len(tracked) == 0:
            points = self._detect_features(gray, self.max_corners)
        else:
            tracked = np.asarray(tracked, dtype=np.float32).reshape(-1, 2)[:self.max_corners]
            mask = np.full(gray.shape[:2], 255, dtype=np.uint8)
            for x, y in tracked:
                cv2.circle(mask, (int(round(x)), int(round(y))), int(self.min_distance), 0, -1)
            fresh = self._detect_features(gray, self.max_corners - len(tracked), mask)
            points = np.vstack([tracked, fresh]) if len(fresh) else tracked

        self.prev_gray = gray
        self.prev_points = points
        self.map_points = points.copy()
