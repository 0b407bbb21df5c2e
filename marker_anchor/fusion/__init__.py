"""
Fusion modules
"""

from .anchor_manager import AnchorManager, pose_jump_too_large

__all__ = [
    'AnchorManager',
    'pose_jump_too_large'
]
