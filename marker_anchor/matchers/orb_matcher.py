"""
ORB特征匹配器
ORB + 暴力汉明匹配，支持距离排序和比值测试两种策略
"""

import logging
from typing import Dict, Any, Optional, Tuple, List

import cv2
import numpy as np

from .matcher_base import MatcherBase
from .matcher_utils import MatchingResult


class ORBMatcher(MatcherBase):
    """ORB特征匹配器"""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.nfeatures = config.get('orb_features', 1000)
        self.scale_factor = config.get('orb_scale_factor', 1.2)
        self.nlevels = config.get('orb_levels', 8)
        self.match_strategy = config.get('match_strategy', 'distance')  # 'distance' | 'ratio'
        self.ratio = config.get('ratio', 0.8)
        self.logger = logging.getLogger('MarkerAnchor.ORBMatcher')

        if self.match_strategy not in ('distance', 'ratio'):
            raise ValueError(f"Unknown match strategy: {self.match_strategy}")

        self._orb = cv2.ORB_create(
            nfeatures=self.nfeatures,
            scaleFactor=self.scale_factor,
            nlevels=self.nlevels
        )
        self._bf = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)

    def detect_and_compute(self, image: np.ndarray) -> Tuple[List[Any], Optional[np.ndarray]]:
        """提取ORB关键点和描述子"""
        if image is None or image.ndim != 2:
            raise ValueError("ORBMatcher expects grayscale images (H,W).")

        keypoints, descriptors = self._orb.detectAndCompute(image, None)
        if keypoints is None:
            keypoints = []
        return list(keypoints), descriptors

    def match(self, kpts0: List[Any], desc0: np.ndarray,
              kpts1: List[Any], desc1: np.ndarray) -> MatchingResult:
        """模板(0)到当前帧(1)的匹配"""
        if desc0 is None or desc1 is None or len(desc0) == 0 or len(desc1) == 0:
            return MatchingResult.empty()

        if self.match_strategy == 'ratio':
            matches = self._knn_ratio_matches(desc0, desc1)
        else:
            matches = list(self._bf.match(desc0, desc1))

        if not matches:
            return MatchingResult.empty()

        # 按距离升序
        matches.sort(key=lambda m: m.distance)

        mkpts0 = np.array([kpts0[m.queryIdx].pt for m in matches], dtype=np.float32)
        mkpts1 = np.array([kpts1[m.trainIdx].pt for m in matches], dtype=np.float32)
        distances = np.array([m.distance for m in matches], dtype=np.float32)

        return MatchingResult(
            mkpts0=mkpts0,
            mkpts1=mkpts1,
            distances=distances,
            num_matches=len(matches)
        )

    def _knn_ratio_matches(self, desc0: np.ndarray, desc1: np.ndarray) -> list:
        """Lowe比值测试"""
        if len(desc1) < 2:
            return []
        good = []
        for pair in self._bf.knnMatch(desc0, desc1, k=2):
            if len(pair) < 2:
                continue
            m, n = pair
            if m.distance < self.ratio * n.distance:
                good.append(m)
        return good

    def close(self):
        self._orb = None
        self._bf = None
