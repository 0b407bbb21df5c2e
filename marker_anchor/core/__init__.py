"""
Core modules
"""

from .base_tracker import BaseTracker
from .video_stream_manager import (
    CaptureSource,
    VideoCaptureSource,
    ImageSequenceSource,
    AnchorRenderer,
    RecordingRenderer
)
from .anchor_system import MarkerAnchorSystem

__all__ = [
    'BaseTracker',
    'CaptureSource',
    'VideoCaptureSource',
    'ImageSequenceSource',
    'AnchorRenderer',
    'RecordingRenderer',
    'MarkerAnchorSystem'
]
