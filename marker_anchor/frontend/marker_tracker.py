"""
标记跟踪器
ORB特征匹配 + 单应性检测平面标记，检测成功后用稀疏光流跟踪四个角点
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union

import cv2
import numpy as np

from ..core.base_tracker import BaseTracker
from ..matchers.orb_matcher import ORBMatcher
from ..matchers.matcher_utils import select_good_matches
from ..utils.data_converter import ImageProcessor
from ..utils.memory_manager import FrameBufferPool
from ..utils.data_structures import (
    MarkerTemplate,
    MarkerDetection,
    MarkerTrackState,
    TrackMode,
)


class TemplateLoadError(ValueError):
    """参考标记无法解码或特征不足"""


class MarkerTracker(BaseTracker):
    """平面标记跟踪器：DETECTING <-> TRACKING 状态机"""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.min_matches = config.get('min_matches', 12)
        self.min_inliers = config.get('min_inliers', 12)
        self.min_frame_keypoints = config.get('min_frame_keypoints', 20)
        self.min_template_keypoints = config.get('min_template_keypoints', self.min_matches)
        self.max_matches = config.get('max_matches', 60)
        self.good_match_percent = config.get('good_match_percent', 0.25)
        self.ransac_threshold = config.get('ransac_threshold', 3.0)

        win_size = config.get('lk_win_size', 21)
        self.lk_params = dict(
            winSize=(win_size, win_size),
            maxLevel=config.get('lk_max_level', 3),
            criteria=(cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 30, 0.01)
        )

        self.logger = logging.getLogger('MarkerAnchor.MarkerTracker')
        self.matcher = ORBMatcher(config)

        self.template: Optional[MarkerTemplate] = None
        self.state = MarkerTrackState()
        self._frame_pool = FrameBufferPool()

        # 诊断计数
        self.detect_calls = 0
        self.flow_successes = 0

    @property
    def ready(self) -> bool:
        return self.template is not None

    @property
    def mode(self) -> TrackMode:
        return self.state.mode

    def load_template(self, source: Union[str, Path, np.ndarray]) -> MarkerTemplate:
        """
        加载参考标记

        Args:
            source: 图像路径或已解码的图像数组

        Returns:
            提取了特征的模板
        """
        if isinstance(source, (str, Path)):
            image = cv2.imread(str(source), cv2.IMREAD_COLOR)
            if image is None:
                raise TemplateLoadError(f"Failed to load marker image: {source}")
        else:
            image = source

        if image is None or image.size == 0:
            raise TemplateLoadError("Marker image is empty")

        try:
            gray = ImageProcessor.to_gray(image).copy()
        except ValueError as e:
            raise TemplateLoadError(f"Unsupported marker image: {e}") from e

        keypoints, descriptors = self.matcher.detect_and_compute(gray)
        if descriptors is None or len(keypoints) < self.min_template_keypoints:
            raise TemplateLoadError(
                f"Marker image yields too few keypoints: {len(keypoints)} < {self.min_template_keypoints}"
            )

        height, width = gray.shape[:2]
        self.template = MarkerTemplate(
            image=gray,
            keypoints=keypoints,
            descriptors=descriptors,
            width=width,
            height=height
        )
        self.reset()
        self.logger.info(f"Marker template loaded: {width}x{height}, {len(keypoints)} keypoints")
        return self.template

    def track(self, frame_gray: np.ndarray) -> Optional[MarkerDetection]:
        """逐帧入口：跟踪中先尝试光流，失败则在同一帧重新检测"""
        if not self.ready:
            return None

        if self.state.mode == TrackMode.TRACKING:
            corners = self._propagate_corners(self.state.prev_gray, frame_gray, self.state.corners)
            if corners is not None:
                self.flow_successes += 1
                self.state.enter_tracking(self._frame_pool.store(frame_gray), corners)
                return MarkerDetection(corners=corners, homography=None,
                                       num_inliers=4, method='flow')

            self.logger.debug("Optical flow lost the marker, falling back to detection")
            self.state.clear()

        detection = self.detect(frame_gray)
        if detection is not None:
            self.state.enter_tracking(self._frame_pool.store(frame_gray), detection.corners)
        return detection

    def detect(self, frame_gray: np.ndarray) -> Optional[MarkerDetection]:
        """
        全量检测：ORB匹配 -> RANSAC单应性 -> 投影模板角点

        Returns:
            角点顺序 TL, TR, BR, BL；任一阶段失败返回 None
        """
        self.detect_calls += 1
        if not self.ready or frame_gray is None or frame_gray.ndim != 2:
            return None

        template = self.template
        try:
            frame_kp, frame_desc = self.matcher.detect_and_compute(frame_gray)
        except cv2.error as e:
            self.logger.debug(f"Frame feature extraction failed: {e}")
            return None

        if frame_desc is None or len(frame_kp) < self.min_frame_keypoints:
            return None

        matches = self.matcher.match(template.keypoints, template.descriptors, frame_kp, frame_desc)
        if matches.num_matches < self.min_matches:
            return None

        good = select_good_matches(
            matches,
            min_keep=self.min_matches,
            max_keep=self.max_matches,
            keep_ratio=self.good_match_percent
        )
        if good.num_matches < self.min_matches:
            return None

        try:
            H, inlier_mask = cv2.findHomography(
                good.mkpts0.reshape(-1, 1, 2),
                good.mkpts1.reshape(-1, 1, 2),
                cv2.RANSAC,
                self.ransac_threshold
            )
        except cv2.error as e:
            self.logger.debug(f"findHomography failed: {e}")
            return None

        if H is None or H.shape != (3, 3) or not np.all(np.isfinite(H)):
            return None

        num_inliers = int(np.count_nonzero(inlier_mask)) if inlier_mask is not None else 0
        if num_inliers < self.min_inliers:
            self.logger.debug(f"Too few homography inliers: {num_inliers}")
            return None

        projected = cv2.perspectiveTransform(template.corners.reshape(-1, 1, 2), H)
        corners = projected.reshape(4, 2).astype(np.float32)
        if not np.all(np.isfinite(corners)):
            return None

        return MarkerDetection(corners=corners, homography=H,
                               num_inliers=num_inliers, method='detect')

    def _propagate_corners(self, prev_gray: np.ndarray, frame_gray: np.ndarray,
                           corners: np.ndarray) -> Optional[np.ndarray]:
        """光流传播4个角点，任一点失败即返回 None"""
        if prev_gray is None or corners is None or prev_gray.shape != frame_gray.shape:
            return None

        try:
            next_pts, status, _ = cv2.calcOpticalFlowPyrLK(
                prev_gray, frame_gray,
                corners.reshape(-1, 1, 2).astype(np.float32),
                None,
                **self.lk_params
            )
        except cv2.error as e:
            self.logger.debug(f"calcOpticalFlowPyrLK failed: {e}")
            return None

        if next_pts is None or status is None:
            return None
        if not np.all(status.reshape(-1) == 1):
            return None

        next_corners = next_pts.reshape(4, 2).astype(np.float32)
        if not np.all(np.isfinite(next_corners)):
            return None
        return next_corners

    def is_tracking_reliable(self) -> bool:
        return self.state.mode == TrackMode.TRACKING

    def reset(self):
        self.state.clear()
        self._frame_pool.clear()

    def close(self):
        """释放模板和匹配器"""
        self.reset()
        self.template = None
        if self.matcher is not None:
            self.matcher.close()
        self.logger.debug("Marker tracker closed")
