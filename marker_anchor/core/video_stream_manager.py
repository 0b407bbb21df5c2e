"""
视频源与渲染器接口
采集源同步返回最新一帧；渲染器每帧只接收一个锚点位姿
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Tuple, Optional, Union, List

import cv2
import numpy as np

from ..utils.data_structures import AnchorPose


class CaptureSource(ABC):
    """采集源接口"""

    @abstractmethod
    def read(self) -> Optional[np.ndarray]:
        """读取一帧，流结束或失败返回 None"""
        pass

    @property
    @abstractmethod
    def resolution(self) -> Tuple[int, int]:
        """(width, height)"""
        pass

    @abstractmethod
    def release(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class VideoCaptureSource(CaptureSource):
    """
    基于 cv2.VideoCapture 的采集源
    source 为摄像头索引或视频文件路径
    """

    def __init__(self, source: Union[int, str, Path] = 0,
                 resolution: Optional[Tuple[int, int]] = None, fps: Optional[int] = None):
        self.logger = logging.getLogger('MarkerAnchor.Capture')
        self.source = source
        self.frame_counter = 0

        if isinstance(source, Path):
            source = str(source)
        elif isinstance(source, str) and source.isdigit():
            source = int(source)

        self.cap = cv2.VideoCapture(source)
        if not self.cap.isOpened():
            self.cap.release()
            raise RuntimeError(f"Failed to open capture source: {self.source}")

        # 摄像头设置分辨率和帧率；视频文件忽略
        if isinstance(source, int):
            if resolution is not None:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, resolution[0])
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, resolution[1])
            if fps is not None:
                self.cap.set(cv2.CAP_PROP_FPS, fps)
            self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)  # 只要最新帧

        width, height = self.resolution
        self.logger.info(f"Capture source {self.source} opened: {width}x{height}")

    def read(self) -> Optional[np.ndarray]:
        if self.cap is None:
            return None
        ret, frame = self.cap.read()
        if not ret or frame is None:
            return None
        self.frame_counter += 1
        return frame

    @property
    def resolution(self) -> Tuple[int, int]:
        if self.cap is None:
            return 0, 0
        width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        return width, height

    def release(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info(f"Capture source {self.source} released after {self.frame_counter} frames")


class ImageSequenceSource(CaptureSource):
    """内存帧序列，离线回放和测试用"""

    def __init__(self, frames: List[np.ndarray]):
        if not frames:
            raise ValueError("Frame sequence is empty")
        self.frames = list(frames)
        self.index = 0

    def read(self) -> Optional[np.ndarray]:
        if self.index >= len(self.frames):
            return None
        frame = self.frames[self.index]
        self.index += 1
        return frame

    @property
    def resolution(self) -> Tuple[int, int]:
        height, width = self.frames[0].shape[:2]
        return width, height

    def release(self):
        self.index = len(self.frames)


class AnchorRenderer(ABC):
    """渲染器接口：位姿为 None 时隐藏虚拟内容"""

    @abstractmethod
    def set_anchor_pose(self, anchor: Optional[AnchorPose]):
        pass

    def close(self):
        pass


class RecordingRenderer(AnchorRenderer):
    """记录每帧收到的锚点位姿"""

    def __init__(self):
        self.history: List[Optional[AnchorPose]] = []

    def set_anchor_pose(self, anchor: Optional[AnchorPose]):
        self.history.append(anchor)

    @property
    def last(self) -> Optional[AnchorPose]:
        return self.history[-1] if self.history else None

    @property
    def visible_count(self) -> int:
        return sum(1 for anchor in self.history if anchor is not None)
