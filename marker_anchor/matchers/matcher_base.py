"""
匹配器基类
定义特征匹配器的通用接口
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Tuple, List
import numpy as np

from .matcher_utils import MatchingResult


class MatcherBase(ABC):
    """特征匹配器基类"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    @abstractmethod
    def detect_and_compute(self, image: np.ndarray) -> Tuple[List[Any], Optional[np.ndarray]]:
        """
        提取关键点和描述子

        Args:
            image: 灰度图像 [H, W]

        Returns:
            keypoints, descriptors（无特征时描述子为 None）
        """
        pass

    @abstractmethod
    def match(self, kpts0: List[Any], desc0: np.ndarray,
              kpts1: List[Any], desc1: np.ndarray) -> MatchingResult:
        """
        执行描述子匹配

        Args:
            kpts0, desc0: 查询侧（模板）特征
            kpts1, desc1: 训练侧（当前帧）特征

        Returns:
            匹配结果，每个查询关键点至多出现一次
        """
        pass

    def close(self):
        """释放底层资源"""
        pass

    def is_match_reliable(self, matches: Optional[MatchingResult], min_matches: int) -> bool:
        """判断匹配结果是否可靠"""
        return matches is not None and matches.num_matches >= min_matches
