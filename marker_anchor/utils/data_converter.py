"""
数据格式转换工具
处理不同图像格式之间的转换
"""

import numpy as np
import cv2
from typing import Optional

from .memory_manager import FrameBufferPool


class ImageProcessor:
    """图像处理和格式转换"""

    @staticmethod
    def to_gray(image: np.ndarray, pool: Optional[FrameBufferPool] = None) -> np.ndarray:
        """
        任意帧转8位灰度图

        Args:
            image: 灰度 [H, W]、BGR [H, W, 3] 或 BGRA [H, W, 4]
            pool: 可选的缓冲池，转换结果写入池中复用的缓冲区

        Returns:
            gray: [H, W] uint8
        """
        if image is None:
            raise ValueError("Input image is None")

        if image.dtype != np.uint8:
            image = ImageProcessor.to_uint8(image)

        if image.ndim == 2:
            return pool.store(image) if pool is not None else image
        if image.ndim == 3 and image.shape[2] == 1:
            gray = image[:, :, 0]
            return pool.store(gray) if pool is not None else gray.copy()

        if image.ndim == 3 and image.shape[2] == 3:
            code = cv2.COLOR_BGR2GRAY
        elif image.ndim == 3 and image.shape[2] == 4:
            code = cv2.COLOR_BGRA2GRAY
        else:
            raise ValueError(f"Unsupported image shape: {image.shape}")

        if pool is None:
            return cv2.cvtColor(image, code)

        dst = pool.acquire(image.shape[:2], np.uint8)
        cv2.cvtColor(image, code, dst=dst)
        return dst

    @staticmethod
    def to_uint8(image: np.ndarray) -> np.ndarray:
        """浮点图像（0-1）或其它整型转 uint8"""
        if np.issubdtype(image.dtype, np.floating):
            return np.clip(image * 255.0, 0, 255).astype(np.uint8)
        return np.clip(image, 0, 255).astype(np.uint8)

    @staticmethod
    def resize_image(image: np.ndarray, target_size: tuple,
                     interpolation: str = 'bilinear') -> np.ndarray:
        """图像尺寸调整，target_size 为 (H, W)"""
        cv2_interp = cv2.INTER_LINEAR if interpolation == 'bilinear' else cv2.INTER_NEAREST
        return cv2.resize(image, (target_size[1], target_size[0]), interpolation=cv2_interp)
