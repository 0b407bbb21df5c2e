#!/usr/bin/env python3
"""
VisualOdometry单元测试
测试特征播种、相对运动估计、失败回退和三角化
"""

import pytest
import numpy as np
import cv2
from unittest.mock import patch

from marker_anchor.frontend.visual_odometry import VisualOdometry
from marker_anchor.solvers.geometry_utils import transform_points, project_points
from marker_anchor.utils.capabilities import OdometryCapability
from marker_anchor.utils.data_structures import Intrinsics, OdometryDelta

from tests.conftest import make_textured_template


def synthetic_correspondences(camera_matrix, R, t, count=120, seed=3):
    """已知相对运动下的无噪声对应点"""
    rng = np.random.RandomState(seed)
    points = np.column_stack([
        rng.uniform(-2, 2, count),
        rng.uniform(-1.5, 1.5, count),
        rng.uniform(4, 10, count)
    ])
    pts_prev = project_points(points, camera_matrix).astype(np.float32)
    pts_curr = project_points(transform_points(points, R, t), camera_matrix).astype(np.float32)
    return pts_prev, pts_curr


def textured_frame(seed=11):
    """全幅纹理灰度帧"""
    tiles = [make_textured_template(size=160, seed=seed + i) for i in range(12)]
    rows = [np.hstack(tiles[r * 4:(r + 1) * 4]) for r in range(3)]
    return cv2.cvtColor(np.vstack(rows), cv2.COLOR_BGR2GRAY)


class TestVisualOdometry:
    """VisualOdometry测试类"""

    def setup_method(self):
        """测试前的设置"""
        self.intrinsics = Intrinsics.from_resolution(640, 480)
        self.vo = VisualOdometry({}, intrinsics=self.intrinsics)
        self.R, _ = cv2.Rodrigues(np.array([0.01, 0.03, -0.02]))
        self.t = np.array([0.3, 0.05, 0.1])

    def test_unavailable_capability(self):
        with pytest.raises(ValueError):
            VisualOdometry({}, capability=OdometryCapability.UNAVAILABLE)

    def test_first_frame_seeds_only(self):
        """首帧只播种特征，不输出运动"""
        frame = textured_frame()
        assert frame.shape == (480, 640)

        assert self.vo.process_frame(frame) is None
        assert self.vo.initialized
        assert 16 <= len(self.vo.prev_points) <= 300
        np.testing.assert_allclose(self.vo.cumulative_pose, np.eye(4))

    def test_intrinsics_derived_when_missing(self):
        vo = VisualOdometry({})
        vo.process_frame(textured_frame())
        assert vo.intrinsics.fx == 640.0
        assert vo.intrinsics.cy == 240.0

    def test_accepts_color_frames(self):
        frame = cv2.cvtColor(textured_frame(), cv2.COLOR_GRAY2BGR)
        assert self.vo.process_frame(frame) is None
        assert self.vo.prev_gray.ndim == 2

    def test_too_few_correspondences_reseeds(self):
        """存活对应点少于16时跳过估计并重新播种，不抛异常"""
        frame = textured_frame()
        self.vo.process_frame(frame)
        few = np.random.RandomState(0).uniform(50, 400, (10, 2)).astype(np.float32)

        with patch.object(self.vo, '_track_features', return_value=(few, few)), \
                patch.object(self.vo, '_estimate_motion') as mock_estimate:
            result = self.vo.process_frame(frame)

        assert result is None
        mock_estimate.assert_not_called()
        assert len(self.vo.prev_points) >= 16
        assert self.vo.map_points_3d.shape == (0, 3)
        np.testing.assert_allclose(self.vo.cumulative_pose, np.eye(4))

    def test_estimate_motion_essential(self):
        """本质矩阵恢复已知旋转和平移方向"""
        pts_prev, pts_curr = synthetic_correspondences(self.intrinsics.camera_matrix, self.R, self.t)

        delta = self.vo._estimate_motion(pts_prev, pts_curr)

        assert isinstance(delta, OdometryDelta)
        np.testing.assert_allclose(delta.rotation, self.R, atol=1e-3)
        assert np.linalg.norm(delta.translation) == pytest.approx(1.0)
        direction = self.t / np.linalg.norm(self.t)
        assert float(np.dot(delta.translation, direction)) > 0.99
        assert delta.num_inliers > 60

    def test_estimate_motion_fundamental_fallback(self):
        """只有基础矩阵时 E = K^T F K"""
        vo = VisualOdometry({}, intrinsics=self.intrinsics, capability=OdometryCapability.FUNDAMENTAL)
        pts_prev, pts_curr = synthetic_correspondences(self.intrinsics.camera_matrix, self.R, self.t)

        with patch('cv2.findEssentialMat') as mock_essential:
            delta = vo._estimate_motion(pts_prev, pts_curr)
            mock_essential.assert_not_called()

        assert delta is not None
        np.testing.assert_allclose(delta.rotation, self.R, atol=2e-2)
        direction = self.t / np.linalg.norm(self.t)
        assert float(np.dot(delta.translation, direction)) > 0.95

    def test_process_frame_accumulates_and_triangulates(self):
        """成功帧累积位姿并生成点云"""
        frame = textured_frame()
        self.vo.process_frame(frame)
        pts_prev, pts_curr = synthetic_correspondences(self.intrinsics.camera_matrix, self.R, self.t)

        with patch.object(self.vo, '_track_features', return_value=(pts_prev, pts_curr)):
            delta = self.vo.process_frame(frame)

        assert delta is not None
        np.testing.assert_allclose(self.vo.cumulative_rotation, delta.rotation)
        np.testing.assert_allclose(self.vo.cumulative_translation, delta.translation)
        assert self.vo.last_delta is delta
        assert len(self.vo.map_points_3d) > 60
        assert np.all(np.abs(self.vo.map_points_3d) <= 100)
        # 下一轮参考点包含跟踪成功的点
        assert len(self.vo.prev_points) >= len(pts_curr)

    def test_cumulative_rotation_order(self):
        """R_cum = R_new * R_cum"""
        frame = textured_frame()
        self.vo.process_frame(frame)
        R2, _ = cv2.Rodrigues(np.array([0.0, -0.02, 0.04]))
        first = synthetic_correspondences(self.intrinsics.camera_matrix, self.R, self.t)
        second = synthetic_correspondences(self.intrinsics.camera_matrix, R2, self.t, seed=5)

        with patch.object(self.vo, '_track_features', side_effect=[first, second]):
            d1 = self.vo.process_frame(frame)
            d2 = self.vo.process_frame(frame)

        np.testing.assert_allclose(self.vo.cumulative_rotation, d2.rotation @ d1.rotation, atol=1e-9)
        np.testing.assert_allclose(self.vo.cumulative_translation, d1.translation + d2.translation)

    def test_solver_exception_is_not_fatal(self):
        """求解异常：保留累计位姿，清空点云，重新播种"""
        frame = textured_frame()
        self.vo.process_frame(frame)
        pts_prev, pts_curr = synthetic_correspondences(self.intrinsics.camera_matrix, self.R, self.t)
        self.vo.map_points_3d = np.ones((5, 3))

        with patch.object(self.vo, '_track_features', return_value=(pts_prev, pts_curr)), \
                patch('cv2.findEssentialMat', side_effect=cv2.error("degenerate")):
            result = self.vo.process_frame(frame)

        assert result is None
        np.testing.assert_allclose(self.vo.cumulative_pose, np.eye(4))
        assert self.vo.map_points_3d.shape == (0, 3)
        assert self.vo.prev_gray is not None
        assert len(self.vo.prev_points) > 0

    def test_degenerate_essential_matrix(self):
        pts = np.random.RandomState(1).uniform(0, 400, (40, 2)).astype(np.float32)
        with patch('cv2.findEssentialMat', return_value=(None, None)):
            assert self.vo._estimate_motion(pts, pts) is None

    def test_real_frames_do_not_raise(self):
        """真实光流路径：平移后的纹理帧"""
        frame = textured_frame()
        shifted = np.roll(frame, 4, axis=1)
        self.vo.process_frame(frame)
        result = self.vo.process_frame(shifted)
        assert result is None or isinstance(result, OdometryDelta)
        assert len(self.vo.prev_points) > 0

    def test_reset(self):
        self.vo.process_frame(textured_frame())
        self.vo.reset()
        assert not self.vo.initialized
        assert self.vo.prev_gray is None
        assert len(self.vo.prev_points) == 0
        assert not self.vo.is_tracking_reliable()
