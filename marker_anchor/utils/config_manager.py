"""
配置管理器
统一的配置文件加载和管理
"""

import copy
import logging
import yaml
from typing import Dict, Any, Union
from pathlib import Path

logger = logging.getLogger('MarkerAnchor.Config')

DEFAULT_CONFIG: Dict[str, Any] = {
    'marker': {
        'image': 'assets/marker.png',
        'size': 0.1,                # 标记物理边长(m)
    },
    'pose_solver': {
        'smoothing_alpha': 0.85,
        'pnp_method': 'SOLVEPNP_ITERATIVE',
    },
    'marker_tracker': {
        'orb_features': 1000,
        'match_strategy': 'distance',
        'min_matches': 12,
        'min_inliers': 12,
        'min_frame_keypoints': 20,
        'max_matches': 60,
        'good_match_percent': 0.25,
        'ransac_threshold': 3.0,
        'lk_win_size': 21,
        'lk_max_level': 3,
    },
    'visual_odometry': {
        'enabled': True,
        'max_corners': 300,
        'quality_level': 0.01,
        'min_distance': 10,
        'min_tracked': 16,
        'ransac_prob': 0.999,
        'ransac_threshold': 1.0,
        'fundamental_threshold': 3.0,
        'fundamental_confidence': 0.99,
        'min_homogeneous_weight': 1.0e-8,
        'max_point_magnitude': 100.0,
    },
    'fusion': {
        'max_jump': 0.25,
        'scale_alpha': 0.9,
        'min_displacement': 1.0e-4,
        'min_odometry_norm': 1.0e-6,
        'lockout_warning_frames': 30,
    },
    'input': {
        'source': 0,
    },
    'performance_targets': {
        'target_fps': 30,
    },
    'visualization': True,
    'output': {
        'save_trajectory': True,
        'save_performance_report': True,
    },
}


class ConfigManager:
    """配置管理器"""

    REQUIRED_SECTIONS = ['marker', 'pose_solver', 'marker_tracker', 'visual_odometry', 'fusion']

    @staticmethod
    def default_config() -> Dict[str, Any]:
        """默认配置的深拷贝"""
        return copy.deepcopy(DEFAULT_CONFIG)

    @staticmethod
    def load_config(config_path: Union[str, Path]) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Args:
            config_path: 配置文件路径

        Returns:
            config: 配置字典
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}

        # 处理继承关系
        if 'inherit_from' in config:
            parent_path = config_path.parent / config['inherit_from']
            parent_config = ConfigManager.load_config(parent_path)
            config = ConfigManager.merge_configs(parent_config, config)
            del config['inherit_from']  # 移除继承标记

        return config

    @staticmethod
    def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
        """递归合并配置字典"""
        merged = base_config.copy()

        for key, value in override_config.items():
            if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
                merged[key] = ConfigManager.merge_configs(merged[key], value)
            else:
                merged[key] = value

        return merged

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> bool:
        """验证配置有效性"""
        for section in ConfigManager.REQUIRED_SECTIONS:
            if section not in config:
                logger.warning(f"Missing required section '{section}' in config")
                return False

        marker_config = config.get('marker', {})
        size = marker_config.get('size')
        if not isinstance(size, (int, float)) or size <= 0:
            logger.warning(f"Marker size must be a positive number, got {size!r}")
            return False

        alpha = config.get('pose_solver', {}).get('smoothing_alpha', 0.85)
        if not 0.0 <= alpha < 1.0:
            logger.warning(f"pose_solver.smoothing_alpha must be in [0, 1), got {alpha}")
            return False

        if 'image' in marker_config:
            image_path = Path(marker_config['image'])
            if not image_path.exists():
                logger.warning(f"Marker image not found: {image_path}")

        return True

    @staticmethod
    def save_config(config: Dict[str, Any], save_path: Union[str, Path]):
        """保存配置到文件"""
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, 'w', encoding='utf-8') as f:
            yaml.dump(config, f, default_flow_style=False, allow_unicode=True, indent=2)
