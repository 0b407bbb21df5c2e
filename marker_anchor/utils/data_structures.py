"""
数据结构定义
定义系统中使用的通用数据结构
"""

import math
import numpy as np
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, List, Dict, Any


@dataclass(frozen=True)
class Intrinsics:
    """相机内参（会话期间不可变）"""
    fx: float
    fy: float
    cx: float
    cy: float
    dist_coeffs: np.ndarray = field(default_factory=lambda: np.zeros((4, 1)))

    @classmethod
    def from_resolution(cls, width: int, height: int) -> 'Intrinsics':
        """根据视频分辨率推算内参（fx = fy = width，无标定）"""
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid resolution: {width}x{height}")
        focal_length = float(width)
        return cls(
            fx=focal_length,
            fy=focal_length,
            cx=width / 2.0,
            cy=height / 2.0,
        )

    @property
    def camera_matrix(self) -> np.ndarray:
        """3x3 相机矩阵 K"""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)


@dataclass
class Pose:
    """求解得到的位姿（相机坐标系，Y轴已翻转为渲染器约定）"""
    position: np.ndarray            # [3] 米
    rotation_matrix: np.ndarray     # [3, 3]
    yaw: float
    pitch: float
    roll: float
    reprojection_error: float = 0.0

    @property
    def euler(self) -> np.ndarray:
        """(yaw, pitch, roll)"""
        return np.array([self.yaw, self.pitch, self.roll], dtype=np.float64)

    def distance_to(self, other: 'Pose') -> float:
        """两个位姿之间的欧氏距离"""
        return float(np.linalg.norm(self.position - other.position))

    def copy(self) -> 'Pose':
        return Pose(
            position=self.position.copy(),
            rotation_matrix=self.rotation_matrix.copy(),
            yaw=self.yaw,
            pitch=self.pitch,
            roll=self.roll,
            reprojection_error=self.reprojection_error
        )


@dataclass
class MarkerTemplate:
    """参考标记模板"""
    image: np.ndarray               # 灰度图 [H, W]
    keypoints: List[Any]            # cv2.KeyPoint 列表
    descriptors: np.ndarray         # ORB 描述子 [N, 32]
    width: int
    height: int

    @property
    def corners(self) -> np.ndarray:
        """模板四角 (TL, TR, BR, BL)"""
        return np.array([
            [0, 0],
            [self.width, 0],
            [self.width, self.height],
            [0, self.height]
        ], dtype=np.float32)


@dataclass
class MarkerDetection:
    """标记检测/跟踪结果"""
    corners: np.ndarray                 # [4, 2] TL, TR, BR, BL
    homography: Optional[np.ndarray]    # [3, 3]，光流跟踪时为 None
    num_inliers: int = 0
    method: str = "detect"              # 'detect' | 'flow'


class TrackMode(Enum):
    """标记跟踪状态"""
    DETECTING = "detecting"
    TRACKING = "tracking"


@dataclass
class MarkerTrackState:
    """标记跟踪状态机：DETECTING 无角点，TRACKING 持有上一帧和4个角点"""
    mode: TrackMode = TrackMode.DETECTING
    prev_gray: Optional[np.ndarray] = None
    corners: Optional[np.ndarray] = None

    def enter_tracking(self, gray: np.ndarray, corners: np.ndarray):
        if corners.shape != (4, 2):
            raise ValueError(f"Tracking state needs exactly 4 corners, got {corners.shape}")
        self.mode = TrackMode.TRACKING
        self.prev_gray = gray
        self.corners = corners.astype(np.float32)

    def clear(self):
        self.mode = TrackMode.DETECTING
        self.prev_gray = None
        self.corners = None


@dataclass
class OdometryDelta:
    """帧间相对运动（平移为单位方向，无尺度）"""
    rotation: np.ndarray        # [3, 3]
    translation: np.ndarray     # [3]
    num_inliers: int = 0


@dataclass
class AnchorPose:
    """交给渲染器的锚点位姿"""
    position: np.ndarray
    rotation_matrix: np.ndarray
    source: str = "marker"      # 'marker' | 'odometry'

    @property
    def euler(self) -> Tuple[float, float, float]:
        """(yaw, pitch, roll)"""
        R = self.rotation_matrix
        pitch = math.asin(max(-1.0, min(1.0, -R[2, 0])))
        roll = math.atan2(R[2, 1], R[2, 2])
        yaw = math.atan2(R[1, 0], R[0, 0])
        return yaw, pitch, roll

    def as_matrix(self) -> np.ndarray:
        """4x4 变换矩阵"""
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = self.rotation_matrix
        transform[:3, 3] = self.position
        return transform

    @classmethod
    def from_pose(cls, pose: Pose) -> 'AnchorPose':
        return cls(
            position=pose.position.copy(),
            rotation_matrix=pose.rotation_matrix.copy(),
            source="marker"
        )


@dataclass
class FrameResult:
    """单帧处理结果"""
    frame_index: int
    anchor: Optional[AnchorPose] = None
    detection: Optional[MarkerDetection] = None
    marker_pose: Optional[Pose] = None
    odometry: Optional[OdometryDelta] = None
    map_points_3d: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    marker_rejected: bool = False
    processing_time: float = 0.0       # ms
    metadata: Dict[str, Any] = field(default_factory=dict)
