"""
性能监控器
记录逐帧各阶段耗时、帧率和标记/锚点可用率
"""

import time
import psutil
import numpy as np
from typing import Dict, Any, List
from collections import defaultdict, deque


class PerformanceMonitor:
    """性能监控器（单线程，在处理线程内调用）"""

    def __init__(self, target_fps: float = 30.0, history_size: int = 300):
        """
        初始化性能监控器

        Args:
            target_fps: 目标帧率
            history_size: 每项统计保留的样本数
        """
        self.target_fps = target_fps
        self.history_size = history_size

        self.timing_stats = defaultdict(lambda: deque(maxlen=history_size))
        self.marker_history = deque(maxlen=history_size)
        self.anchor_history = deque(maxlen=history_size)
        self.frame_times = deque(maxlen=30)

        self.current_fps = 0.0
        self.total_frames = 0
        self.last_frame_time = None

    def log_time(self, stage: str, duration_ms: float):
        """记录某阶段耗时(ms)"""
        self.timing_stats[stage].append(duration_ms)

    def update_frame_stats(self, processing_time: float, marker_visible: bool, anchor_available: bool):
        """更新帧统计"""
        current_time = time.time()
        if self.last_frame_time is not None:
            self.frame_times.append(current_time - self.last_frame_time)
        self.last_frame_time = current_time

        if self.frame_times:
            avg_interval = float(np.mean(self.frame_times))
            self.current_fps = 1.0 / max(avg_interval, 1e-6)

        self.total_frames += 1
        self.marker_history.append(marker_visible)
        self.anchor_history.append(anchor_available)
        self.timing_stats['frame'].append(processing_time)

    def get_real_time_stats(self) -> Dict[str, Any]:
        """获取实时统计信息"""
        stats = {
            'fps': self.current_fps,
            'target_fps': self.target_fps,
            'fps_ratio': self.current_fps / self.target_fps if self.target_fps > 0 else 0.0,
            'total_frames': self.total_frames,
        }
        if self.marker_history:
            stats['marker_visible_rate'] = float(np.mean(self.marker_history))
        if self.anchor_history:
            stats['anchor_available_rate'] = float(np.mean(self.anchor_history))
        return stats

    def get_timing_summary(self) -> Dict[str, Dict[str, float]]:
        """获取时间统计摘要"""
        summary = {}
        for key, times in self.timing_stats.items():
            if len(times) > 0:
                times_array = np.array(times)
                summary[key] = {
                    'mean': float(np.mean(times_array)),
                    'std': float(np.std(times_array)),
                    'min': float(np.min(times_array)),
                    'max': float(np.max(times_array)),
                    'median': float(np.median(times_array)),
                    'count': len(times)
                }
        return summary

    def check_performance_warnings(self) -> List[str]:
        """检查性能警告"""
        warnings = []
        stats = self.get_real_time_stats()

        if self.total_frames > 30 and stats['fps_ratio'] < 0.8:
            warnings.append(f"Low FPS: {stats['fps']:.1f} (target: {self.target_fps})")

        if 'anchor_available_rate' in stats and self.total_frames > 30 and stats['anchor_available_rate'] < 0.5:
            warnings.append(f"Anchor available only {stats['anchor_available_rate']:.1%} of frames")

        return warnings

    def generate_report(self) -> Dict[str, Any]:
        """生成性能报告"""
        return {
            'summary': self.get_real_time_stats(),
            'timing_analysis': self.get_timing_summary(),
            'warnings': self.check_performance_warnings(),
            'system_info': self._get_system_info()
        }

    def _get_system_info(self) -> Dict[str, Any]:
        """获取系统信息"""
        memory = psutil.virtual_memory()
        return {
            'cpu_count': psutil.cpu_count(),
            'cpu_percent': psutil.cpu_percent(),
            'total_memory_gb': memory.total / (1024**3),
            'available_memory_gb': memory.available / (1024**3),
            'process_memory_mb': psutil.Process().memory_info().rss / (1024**2),
        }
