"""
几何工具函数
包含3D几何计算相关的工具函数
"""

import math
import cv2
import numpy as np
from typing import Tuple


def rotation_matrix_to_euler(R: np.ndarray) -> Tuple[float, float, float]:
    """
    旋转矩阵转欧拉角 (ZYX)

    Args:
        R: 旋转矩阵 [3, 3]

    Returns:
        yaw, pitch, roll (弧度)
    """
    pitch = math.asin(max(-1.0, min(1.0, -float(R[2, 0]))))
    roll = math.atan2(float(R[2, 1]), float(R[2, 2]))
    yaw = math.atan2(float(R[1, 0]), float(R[0, 0]))
    return yaw, pitch, roll


def euler_to_rotation_matrix(yaw: float, pitch: float, roll: float) -> np.ndarray:
    """欧拉角转旋转矩阵，R = Rz(yaw) * Ry(pitch) * Rx(roll)"""
    cy, sy = math.cos(yaw), math.sin(yaw)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cr, sr = math.cos(roll), math.sin(roll)

    Rz = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])
    Ry = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
    Rx = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])
    return Rz @ Ry @ Rx


def wrap_angle(angle: float) -> float:
    """将角度归一化到 (-pi, pi]"""
    wrapped = math.fmod(angle + math.pi, 2.0 * math.pi)
    if wrapped <= 0.0:
        wrapped += 2.0 * math.pi
    return wrapped - math.pi


def smooth_value(prev: float, raw: float, alpha: float) -> float:
    """指数滑动平均: alpha * prev + (1 - alpha) * raw"""
    return prev * alpha + raw * (1.0 - alpha)


def smooth_angle(prev: float, raw: float, alpha: float) -> float:
    """沿最短弧的角度EMA，远离 ±pi 时与 smooth_value 相同"""
    return wrap_angle(prev + (1.0 - alpha) * wrap_angle(raw - prev))


def marker_object_points(marker_size: float) -> np.ndarray:
    """
    平面标记的3D角点（Z=0，中心为原点）

    Args:
        marker_size: 标记边长(米)

    Returns:
        object_points: [4, 3]，顺序 TL, TR, BR, BL
    """
    half = marker_size / 2.0
    return np.array([
        [-half,  half, 0.0],
        [ half,  half, 0.0],
        [ half, -half, 0.0],
        [-half, -half, 0.0],
    ], dtype=np.float64)


def transform_points(points: np.ndarray, R: np.ndarray, T: np.ndarray) -> np.ndarray:
    """
    使用旋转和平移变换3D点

    Args:
        points: 输入3D点 [N, 3]
        R: 旋转矩阵 [3, 3]
        T: 平移向量 [3]

    Returns:
        transformed_points: 变换后的3D点 [N, 3]
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return (R @ points.T).T + np.asarray(T, dtype=np.float64).reshape(1, 3)


def project_points(points_3d: np.ndarray, intrinsics: np.ndarray) -> np.ndarray:
    """
    将相机坐标系下的3D点投影到图像平面

    Args:
        points_3d: 3D点 [N, 3]
        intrinsics: 相机内参 [3, 3]

    Returns:
        points_2d: 投影的2D点 [N, 2]
    """
    projected = (intrinsics @ np.asarray(points_3d, dtype=np.float64).T).T
    return projected[:, :2] / projected[:, 2:3]


def compute_reprojection_error(points_3d: np.ndarray, points_2d: np.ndarray,
                               rvec: np.ndarray, tvec: np.ndarray,
                               camera_matrix: np.ndarray,
                               dist_coeffs: np.ndarray) -> float:
    """计算平均重投影误差(像素)"""
    projected, _ = cv2.projectPoints(
        np.asarray(points_3d, dtype=np.float64),
        rvec, tvec, camera_matrix, dist_coeffs
    )
    errors = np.linalg.norm(np.asarray(points_2d).reshape(-1, 2) - projected.reshape(-1, 2), axis=1)
    return float(np.mean(errors))


def filter_homogeneous_points(points_4d: np.ndarray, min_weight: float = 1e-8,
                              max_magnitude: float = 100.0) -> np.ndarray:
    """
    齐次坐标转欧氏坐标并剔除退化点

    Args:
        points_4d: 齐次坐标 [4, N]
        min_weight: 齐次权重绝对值下限
        max_magnitude: 任一坐标绝对值上限

    Returns:
        points_3d: [M, 3]
    """
    points_4d = np.asarray(points_4d, dtype=np.float64)
    if points_4d.size == 0:
        return np.zeros((0, 3), dtype=np.float64)

    w = points_4d[3]
    valid = np.abs(w) >= min_weight
    safe_w = np.where(valid, w, 1.0)
    points_3d = (points_4d[:3] / safe_w).T

    with np.errstate(invalid='ignore'):
        valid &= np.all(np.isfinite(points_3d), axis=1)
        valid &= np.all(np.abs(points_3d) <= max_magnitude, axis=1)
    return points_3d[valid]


def triangulate_points(camera_matrix: np.ndarray, R: np.ndarray, t: np.ndarray,
                       pts_prev: np.ndarray, pts_curr: np.ndarray,
                       min_weight: float = 1e-8, max_magnitude: float = 100.0) -> np.ndarray:
    """
    两视图三角化（结果位于前一帧相机坐标系）

    Args:
        camera_matrix: 相机内参 [3, 3]
        R, t: 前一帧到当前帧的相对位姿
        pts_prev, pts_curr: 对应像素点 [N, 2]

    Returns:
        points_3d: 过滤后的3D点 [M, 3]
    """
    K = np.asarray(camera_matrix, dtype=np.float64)
    P1 = K @ np.hstack([np.eye(3), np.zeros((3, 1))])
    P2 = K @ np.hstack([np.asarray(R, dtype=np.float64), np.asarray(t, dtype=np.float64).reshape(3, 1)])

    points_4d = cv2.triangulatePoints(
        P1, P2,
        np.asarray(pts_prev, dtype=np.float64).reshape(-1, 2).T,
        np.asarray(pts_curr, dtype=np.float64).reshape(-1, 2).T
    )
    return filter_homogeneous_points(points_4d, min_weight, max_magnitude)
