"""
工具模块
包含数据转换、配置、能力探测、性能监控等实用工具
"""

from .data_converter import ImageProcessor
from .config_manager import ConfigManager
from .capabilities import probe_capabilities, VisionCapabilities, OdometryCapability

__all__ = [
    'ImageProcessor',
    'ConfigManager',
    'probe_capabilities',
    'VisionCapabilities',
    'OdometryCapability'
]
