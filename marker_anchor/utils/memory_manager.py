"""
内存管理器
逐帧复用灰度缓冲区，避免紧循环中的重复分配
"""

import numpy as np
from typing import Optional, Tuple


class FrameBufferPool:
    """
    双缓冲灰度帧池

    写入时总是使用"非上一帧"的那块缓冲区，因此上一帧在其后继生成之前一直有效。
    """

    def __init__(self):
        self._buffers = [None, None]
        self._current = 1
        self.allocations = 0

    def acquire(self, shape: Tuple[int, ...], dtype=np.uint8) -> np.ndarray:
        """取得下一块缓冲区（形状变化时重新分配）"""
        self._current = 1 - self._current
        buffer = self._buffers[self._current]
        if buffer is None or buffer.shape != tuple(shape) or buffer.dtype != dtype:
            buffer = np.empty(shape, dtype=dtype)
            self._buffers[self._current] = buffer
            self.allocations += 1
        return buffer

    def store(self, image: np.ndarray) -> np.ndarray:
        """把图像复制进下一块缓冲区"""
        buffer = self.acquire(image.shape, image.dtype)
        np.copyto(buffer, image)
        return buffer

    @property
    def latest(self) -> Optional[np.ndarray]:
        return self._buffers[self._current]

    def clear(self):
        self._buffers = [None, None]
        self._current = 1
