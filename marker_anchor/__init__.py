"""
Marker Anchor: planar marker tracking + monocular visual odometry

Keeps a virtual object anchored to a known planar marker, estimating the
metric marker pose with OpenCV PnP and carrying it through marker occlusion
with scale-corrected visual odometry.
"""

from .version import __version__
from .core.anchor_system import MarkerAnchorSystem
from .frontend.marker_tracker import MarkerTracker, TemplateLoadError
from .frontend.visual_odometry import VisualOdometry
from .fusion.anchor_manager import AnchorManager, pose_jump_too_large
from .solvers.pnp_solver import PoseSolver, PoseSession
from .utils.config_manager import ConfigManager

__all__ = [
    '__version__',
    'MarkerAnchorSystem',
    'MarkerTracker',
    'TemplateLoadError',
    'VisualOdometry',
    'AnchorManager',
    'pose_jump_too_large',
    'PoseSolver',
    'PoseSession',
    'ConfigManager'
]

# Package metadata
__author__ = "LMGS Team"
__email__ = "team@lmgs.ai"


def get_version():
    """获取版本信息"""
    return __version__


def create_anchor_system(config_path: str, **kwargs):
    """便捷的系统创建函数"""
    return MarkerAnchorSystem.from_config_file(config_path, **kwargs)
