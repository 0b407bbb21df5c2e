"""
Frontend modules
"""

from .marker_tracker import MarkerTracker, TemplateLoadError
from .visual_odometry import VisualOdometry

__all__ = [
    'MarkerTracker',
    'TemplateLoadError',
    'VisualOdometry'
]
