"""
视觉库能力探测
启动时解析一次，作为显式配置值传递给各组件
"""

import logging
from enum import Enum
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional

import cv2


class OdometryCapability(Enum):
    """视觉里程计可用性"""
    ESSENTIAL = "essential"         # findEssentialMat + recoverPose
    FUNDAMENTAL = "fundamental"     # findFundamentalMat + recoverPose，E = K^T F K
    UNAVAILABLE = "unavailable"

    @property
    def available(self) -> bool:
        return self is not OdometryCapability.UNAVAILABLE


@dataclass(frozen=True)
class VisionCapabilities:
    """OpenCV 原语可用性描述"""
    version: str
    orb: bool
    bf_matcher: bool
    find_homography: bool
    solve_pnp: bool
    rodrigues: bool
    optical_flow: bool
    good_features: bool
    find_essential: bool
    find_fundamental: bool
    recover_pose: bool
    triangulate: bool

    @property
    def marker_tracking(self) -> bool:
        return all([self.orb, self.bf_matcher, self.find_homography, self.optical_flow])

    @property
    def pose_solving(self) -> bool:
        return self.solve_pnp and self.rodrigues

    @property
    def odometry(self) -> OdometryCapability:
        base = self.optical_flow and self.good_features and self.recover_pose and self.triangulate
        if not base:
            return OdometryCapability.UNAVAILABLE
        if self.find_essential:
            return OdometryCapability.ESSENTIAL
        if self.find_fundamental:
            return OdometryCapability.FUNDAMENTAL
        return OdometryCapability.UNAVAILABLE

    def as_dict(self) -> Dict[str, Any]:
        info = asdict(self)
        info['odometry'] = self.odometry.value
        return info


def probe_capabilities(cv_module: Optional[Any] = None) -> VisionCapabilities:
    """检查视觉库提供的原语"""
    cv = cv_module if cv_module is not None else cv2

    def has(name: str) -> bool:
        return callable(getattr(cv, name, None))

    return VisionCapabilities(
        version=str(getattr(cv, '__version__', 'unknown')),
        orb=has('ORB_create'),
        bf_matcher=has('BFMatcher'),
        find_homography=has('findHomography'),
        solve_pnp=has('solvePnP'),
        rodrigues=has('Rodrigues'),
        optical_flow=has('calcOpticalFlowPyrLK'),
        good_features=has('goodFeaturesToTrack'),
        find_essential=has('findEssentialMat'),
        find_fundamental=has('findFundamentalMat'),
        recover_pose=has('recoverPose'),
        triangulate=has('triangulatePoints'),
    )


def log_capabilities(capabilities: VisionCapabilities, logger: Optional[logging.Logger] = None):
    """输出能力表"""
    logger = logger or logging.getLogger('MarkerAnchor')
    logger.info(f"OpenCV version: {capabilities.version}")
    for name, value in capabilities.as_dict().items():
        if name == 'version':
            continue
        logger.info(f"  {name:<18} {value}")
