"""
跟踪器基类
定义逐帧跟踪器的通用接口
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional
import numpy as np


class BaseTracker(ABC):
    """跟踪器基类"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    def track(self, frame: np.ndarray) -> Optional[Any]:
        """
        处理一帧

        Args:
            frame: 当前帧

        Returns:
            本帧结果，无结果时返回 None
        """
        pass

    @abstractmethod
    def is_tracking_reliable(self) -> bool:
        """判断跟踪是否可靠"""
        pass

    @abstractmethod
    def reset(self):
        """清除跟踪状态"""
        pass
