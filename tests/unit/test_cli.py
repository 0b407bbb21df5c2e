"""
命令行入口测试
"""

import cv2
import numpy as np
from unittest.mock import patch, Mock

import run_marker_anchor
from marker_anchor.core.video_stream_manager import ImageSequenceSource
from marker_anchor.utils.data_structures import FrameResult


class TestArgs:
    """参数解析与配置覆盖"""

    def test_defaults(self):
        args = run_marker_anchor.parse_args([])
        assert args.config is None
        assert args.save_dir == 'marker_anchor_results'
        assert not args.no_vis

    def test_overrides(self):
        args = run_marker_anchor.parse_args([
            '--marker', 'm.png', '--marker-size', '0.2', '--source', '1', '--no-vis'
        ])
        config = run_marker_anchor.build_config(args)
        assert config['marker']['image'] == 'm.png'
        assert config['marker']['size'] == 0.2
        assert config['input']['source'] == 1
        assert config['visualization'] is False

    def test_video_path_source(self):
        args = run_marker_anchor.parse_args(['--source', 'clip.mp4'])
        assert run_marker_anchor.build_config(args)['input']['source'] == 'clip.mp4'

    def test_missing_config_file(self, tmp_path):
        args = run_marker_anchor.parse_args(['--config', str(tmp_path / 'nope.yaml')])
        assert run_marker_anchor.main(['--config', args.config]) == 1


class TestKeyHandler:
    """窗口按键处理"""

    def setup_method(self):
        self.system = Mock()
        self.system.visual_odometry = None
        self.renderer = Mock()
        self.handler = run_marker_anchor.make_key_handler(self.system, self.renderer)

    def _press(self, key):
        self.renderer.render.return_value = key
        return self.handler(np.zeros((10, 10), dtype=np.uint8), FrameResult(frame_index=0))

    def test_origin(self):
        assert self._press(ord('o')) is True
        self.system.set_world_origin.assert_called_once()

    def test_reset(self):
        assert self._press(ord('r')) is True
        self.system.reset.assert_called_once()

    def test_quit(self):
        assert self._press(ord('q')) is False

    def test_no_key(self):
        assert self._press(-1) is True
        self.renderer.set_frame.assert_called_once()


class TestMain:
    """端到端运行 main()"""

    def test_main_runs_on_sequence(self, marker_template, marker_frame, tmp_path):
        marker_path = tmp_path / 'marker.png'
        cv2.imwrite(str(marker_path), marker_template)
        frame, _ = marker_frame
        save_dir = tmp_path / 'out'

        with patch('marker_anchor.core.anchor_system.VideoCaptureSource',
                   return_value=ImageSequenceSource([frame] * 3)):
            code = run_marker_anchor.main([
                '--marker', str(marker_path), '--no-vis', '--save-dir', str(save_dir)
            ])

        assert code == 0
        assert (save_dir / 'trajectory.txt').exists()
        assert (save_dir / 'performance_report.json').exists()
