"""
pytest配置文件
定义测试夹具和全局配置
"""

import pytest
import sys
import numpy as np
import cv2
from pathlib import Path

# 添加项目路径
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


def make_textured_template(size: int = 240, seed: int = 7) -> np.ndarray:
    """随机矩形和圆组成的高纹理标记图（BGR）"""
    rng = np.random.RandomState(seed)
    image = np.full((size, size, 3), 255, dtype=np.uint8)
    for _ in range(60):
        x0, y0 = rng.randint(0, size - 20, size=2)
        w, h = rng.randint(10, 60, size=2)
        color = tuple(int(c) for c in rng.randint(0, 255, size=3))
        cv2.rectangle(image, (int(x0), int(y0)), (int(x0 + w), int(y0 + h)), color, -1)
    for _ in range(30):
        center = tuple(int(c) for c in rng.randint(10, size - 10, size=2))
        radius = int(rng.randint(4, 20))
        color = tuple(int(c) for c in rng.randint(0, 255, size=3))
        cv2.circle(image, center, radius, color, -1)
    cv2.rectangle(image, (0, 0), (size - 1, size - 1), (0, 0, 0), 4)
    return image


def compose_frame(template: np.ndarray, x0: int, y0: int,
                  frame_size=(640, 480), background: int = 110) -> np.ndarray:
    """把模板按原尺寸贴到均匀背景上"""
    width, height = frame_size
    frame = np.full((height, width, 3), background, dtype=np.uint8)
    h, w = template.shape[:2]
    frame[y0:y0 + h, x0:x0 + w] = template
    return frame


def expected_corners(template: np.ndarray, x0: int, y0: int) -> np.ndarray:
    h, w = template.shape[:2]
    return np.array([
        [x0, y0],
        [x0 + w, y0],
        [x0 + w, y0 + h],
        [x0, y0 + h]
    ], dtype=np.float32)


@pytest.fixture
def sample_config():
    """样例配置fixture"""
    from marker_anchor.utils.config_manager import ConfigManager
    config = ConfigManager.default_config()
    config['marker']['image'] = None
    config['visualization'] = False
    return config


@pytest.fixture
def marker_template():
    """高纹理标记模板"""
    return make_textured_template()


@pytest.fixture
def marker_frame(marker_template):
    """包含标记的合成帧及其真实角点"""
    x0, y0 = 200, 120
    frame = compose_frame(marker_template, x0, y0)
    return frame, expected_corners(marker_template, x0, y0)


@pytest.fixture
def camera_matrix():
    """640x480 分辨率推算的内参"""
    return np.array([
        [640.0, 0, 320.0],
        [0, 640.0, 240.0],
        [0, 0, 1.0]
    ])
