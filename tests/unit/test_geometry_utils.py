#!/usr/bin/env python3
"""
几何工具单元测试
"""

import math
import pytest
import numpy as np
import cv2

from marker_anchor.solvers.geometry_utils import (
    rotation_matrix_to_euler,
    euler_to_rotation_matrix,
    wrap_angle,
    smooth_value,
    smooth_angle,
    marker_object_points,
    transform_points,
    project_points,
    filter_homogeneous_points,
    triangulate_points,
)


class TestEulerConversion:
    """欧拉角转换测试"""

    @pytest.mark.parametrize("yaw,pitch,roll", [
        (0.0, 0.0, 0.0),
        (0.3, -0.2, 0.1),
        (-2.5, 0.7, 1.2),
        (3.0, -1.0, -3.0),
    ])
    def test_round_trip(self, yaw, pitch, roll):
        R = euler_to_rotation_matrix(yaw, pitch, roll)
        recovered = rotation_matrix_to_euler(R)
        np.testing.assert_allclose(recovered, (yaw, pitch, roll), atol=1e-9)

    def test_zyx_convention(self):
        """pitch = asin(-R20), roll = atan2(R21, R22), yaw = atan2(R10, R00)"""
        R, _ = cv2.Rodrigues(np.array([0.2, -0.4, 0.3]))
        yaw, pitch, roll = rotation_matrix_to_euler(R)
        assert pitch == pytest.approx(math.asin(-R[2, 0]))
        assert roll == pytest.approx(math.atan2(R[2, 1], R[2, 2]))
        assert yaw == pytest.approx(math.atan2(R[1, 0], R[0, 0]))

    def test_rotation_is_orthonormal(self):
        R = euler_to_rotation_matrix(1.0, 0.5, -0.3)
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
        assert np.linalg.det(R) == pytest.approx(1.0)


class TestSmoothing:
    """指数平滑测试"""

    def test_wrap_angle(self):
        assert wrap_angle(0.0) == 0.0
        assert wrap_angle(2 * math.pi + 0.1) == pytest.approx(0.1)
        assert wrap_angle(-math.pi - 0.1) == pytest.approx(math.pi - 0.1)
        assert -math.pi < wrap_angle(math.pi) <= math.pi

    def test_smooth_value(self):
        assert smooth_value(1.0, 2.0, 0.85) == pytest.approx(0.85 * 1.0 + 0.15 * 2.0)

    def test_smooth_angle_matches_ema_away_from_pi(self):
        assert smooth_angle(0.2, 0.4, 0.85) == pytest.approx(smooth_value(0.2, 0.4, 0.85))

    def test_smooth_angle_shortest_arc(self):
        prev = math.pi - 0.05
        raw = -math.pi + 0.05
        result = smooth_angle(prev, raw, 0.85)
        assert result == pytest.approx(prev + 0.15 * 0.1)


class TestMarkerGeometry:
    """标记几何测试"""

    def test_object_points(self):
        points = marker_object_points(0.2)
        assert points.shape == (4, 3)
        np.testing.assert_allclose(points[0], [-0.1, 0.1, 0.0])   # TL
        np.testing.assert_allclose(points[1], [0.1, 0.1, 0.0])    # TR
        np.testing.assert_allclose(points[2], [0.1, -0.1, 0.0])   # BR
        np.testing.assert_allclose(points[3], [-0.1, -0.1, 0.0])  # BL
        assert np.all(points[:, 2] == 0)

    def test_transform_and_project(self, camera_matrix):
        points = marker_object_points(0.1)
        camera_points = transform_points(points, np.eye(3), np.array([0, 0, 1.0]))
        projected = project_points(camera_points, camera_matrix)
        np.testing.assert_allclose(projected[0], [320 - 32, 240 + 32])


class TestTriangulation:
    """三角化与退化点过滤测试"""

    def test_filter_small_weight(self):
        points_4d = np.array([
            [1.0, 1.0, 2.0],
            [2.0, 1.0, 2.0],
            [3.0, 1.0, 2.0],
            [1.0, 1e-9, 2.0],
        ])
        filtered = filter_homogeneous_points(points_4d)
        assert filtered.shape == (2, 3)
        np.testing.assert_allclose(filtered[0], [1, 2, 3])
        np.testing.assert_allclose(filtered[1], [1, 1, 1])

    def test_filter_large_magnitude(self):
        points_4d = np.array([
            [1.0, 101.0, 0.5],
            [1.0, 0.0, 0.5],
            [1.0, 0.0, -100.0],
            [1.0, 1.0, 1.0],
        ])
        filtered = filter_homogeneous_points(points_4d)
        # 第三个点 z = -100，恰好等于上限，保留
        assert filtered.shape == (2, 3)
        assert np.all(np.abs(filtered) <= 100)

    def test_filter_empty(self):
        assert filter_homogeneous_points(np.zeros((4, 0))).shape == (0, 3)

    def test_triangulate_known_points(self, camera_matrix):
        """两视图三角化恢复前一帧坐标系下的点"""
        rng = np.random.RandomState(0)
        points = np.column_stack([
            rng.uniform(-1, 1, 30),
            rng.uniform(-1, 1, 30),
            rng.uniform(4, 8, 30)
        ])
        R, _ = cv2.Rodrigues(np.array([0.0, 0.05, 0.0]))
        t = np.array([0.2, 0.0, 0.0])

        pts_prev = project_points(points, camera_matrix)
        pts_curr = project_points(transform_points(points, R, t), camera_matrix)

        triangulated = triangulate_points(camera_matrix, R, t, pts_prev, pts_curr)

        assert triangulated.shape == (30, 3)
        np.testing.assert_allclose(triangulated, points, atol=1e-3)
