"""
匹配器工具函数和数据结构
"""

from dataclasses import dataclass
import numpy as np


@dataclass
class MatchingResult:
    """特征匹配结果数据结构"""
    mkpts0: np.ndarray          # 模板关键点 [N, 2]
    mkpts1: np.ndarray          # 当前帧关键点 [N, 2]
    distances: np.ndarray       # 描述子距离 [N]
    num_matches: int            # 匹配点数量

    @classmethod
    def empty(cls) -> 'MatchingResult':
        return cls(
            mkpts0=np.zeros((0, 2), np.float32),
            mkpts1=np.zeros((0, 2), np.float32),
            distances=np.zeros((0,), np.float32),
            num_matches=0
        )

    def top_k(self, k: int) -> 'MatchingResult':
        """按距离保留最好的k个匹配"""
        order = np.argsort(self.distances, kind='stable')[:max(k, 0)]
        return MatchingResult(
            mkpts0=self.mkpts0[order],
            mkpts1=self.mkpts1[order],
            distances=self.distances[order],
            num_matches=int(len(order))
        )


def select_good_matches(matches: MatchingResult, min_keep: int = 12,
                        max_keep: int = 60, keep_ratio: float = 0.25) -> MatchingResult:
    """按距离排序后保留 max(min_keep, min(max_keep, floor(n * keep_ratio))) 个匹配"""
    keep = max(min_keep, min(max_keep, int(np.floor(matches.num_matches * keep_ratio))))
    return matches.top_k(keep)
