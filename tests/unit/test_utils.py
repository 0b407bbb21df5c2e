"""
工具模块单元测试
"""

import json
import pytest
import numpy as np
from types import SimpleNamespace
from unittest.mock import patch

from marker_anchor.utils.capabilities import (
    probe_capabilities,
    log_capabilities,
    OdometryCapability,
)
from marker_anchor.utils.performance_monitor import PerformanceMonitor
from marker_anchor.matchers.matcher_utils import MatchingResult, select_good_matches


def fake_cv(missing=()):
    """只包含部分原语的视觉库替身"""
    names = [
        'ORB_create', 'BFMatcher', 'findHomography', 'solvePnP', 'Rodrigues',
        'calcOpticalFlowPyrLK', 'goodFeaturesToTrack', 'findEssentialMat',
        'findFundamentalMat', 'recoverPose', 'triangulatePoints'
    ]
    attrs = {name: (lambda *a, **k: None) for name in names if name not in missing}
    attrs['__version__'] = '4.9.0'
    return SimpleNamespace(**attrs)


class TestCapabilities:
    """视觉库能力探测测试"""

    def test_real_opencv(self):
        caps = probe_capabilities()
        assert caps.marker_tracking
        assert caps.pose_solving
        assert caps.odometry == OdometryCapability.ESSENTIAL

    def test_full_fake(self):
        caps = probe_capabilities(fake_cv())
        assert caps.version == '4.9.0'
        assert caps.odometry == OdometryCapability.ESSENTIAL

    def test_fundamental_fallback(self):
        caps = probe_capabilities(fake_cv(missing=('findEssentialMat',)))
        assert caps.odometry == OdometryCapability.FUNDAMENTAL
        assert caps.odometry.available

    def test_no_epipolar_primitives(self):
        caps = probe_capabilities(fake_cv(missing=('findEssentialMat', 'findFundamentalMat')))
        assert caps.odometry == OdometryCapability.UNAVAILABLE
        assert not caps.odometry.available
        # 标记跟踪不受影响
        assert caps.marker_tracking

    def test_missing_orb(self):
        caps = probe_capabilities(fake_cv(missing=('ORB_create',)))
        assert not caps.marker_tracking
        assert caps.odometry.available

    def test_as_dict_and_logging(self):
        caps = probe_capabilities(fake_cv(missing=('recoverPose',)))
        info = caps.as_dict()
        assert info['recover_pose'] is False
        assert info['odometry'] == 'unavailable'
        log_capabilities(caps)


class TestMatcherUtils:
    """匹配筛选测试"""

    def _matches(self, n):
        return MatchingResult(
            mkpts0=np.arange(n * 2, dtype=np.float32).reshape(n, 2),
            mkpts1=np.arange(n * 2, dtype=np.float32).reshape(n, 2),
            distances=np.arange(n, 0, -1, dtype=np.float32),
            num_matches=n
        )

    @pytest.mark.parametrize("n,expected", [(20, 12), (100, 25), (400, 60)])
    def test_keep_count(self, n, expected):
        """保留 max(12, min(60, floor(0.25 n)))"""
        assert select_good_matches(self._matches(n)).num_matches == expected

    def test_keeps_best_distances(self):
        good = select_good_matches(self._matches(100))
        assert np.all(np.diff(good.distances) >= 0)
        assert good.distances[0] == 1.0

    def test_empty(self):
        assert select_good_matches(MatchingResult.empty()).num_matches == 0


class TestPerformanceMonitor:
    """性能监控器测试"""

    def setup_method(self):
        self.monitor = PerformanceMonitor(target_fps=30)

    def test_stage_timing(self):
        for value in (1.0, 2.0, 3.0):
            self.monitor.log_time('marker', value)
        summary = self.monitor.get_timing_summary()
        assert summary['marker']['mean'] == pytest.approx(2.0)
        assert summary['marker']['count'] == 3

    def test_availability_rates(self):
        self.monitor.update_frame_stats(5.0, marker_visible=True, anchor_available=True)
        self.monitor.update_frame_stats(5.0, marker_visible=False, anchor_available=True)
        stats = self.monitor.get_real_time_stats()
        assert stats['total_frames'] == 2
        assert stats['marker_visible_rate'] == pytest.approx(0.5)
        assert stats['anchor_available_rate'] == pytest.approx(1.0)

    def test_low_anchor_warning(self):
        with patch('time.time', side_effect=[i / 30.0 for i in range(40)]):
            for _ in range(40):
                self.monitor.update_frame_stats(5.0, marker_visible=False, anchor_available=False)
        warnings = self.monitor.check_performance_warnings()
        assert any('Anchor available' in w for w in warnings)

    def test_report_is_json_serialisable(self):
        self.monitor.update_frame_stats(5.0, marker_visible=True, anchor_available=True)
        report = self.monitor.generate_report()
        assert set(report) == {'summary', 'timing_analysis', 'warnings', 'system_info'}
        json.dumps(report)


class TestPackageMetadata:
    """包元数据与 setup.py 一致"""

    def test_metadata_matches_setup(self):
        import marker_anchor
        from pathlib import Path

        setup_text = (Path(__file__).parents[2] / "setup.py").read_text(encoding='utf-8')
        assert f'author_email="{marker_anchor.__email__}"' in setup_text
        assert f'version = "{marker_anchor.__version__}"' in setup_text
