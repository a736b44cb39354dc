"""Simple motion detector comparing successive low resolution frames."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping

import numpy as np

from camstages.stage import LORES, CompletedRequest, PostProcessingStage, register_stage

NAME = "motion_detect"
RESULT_KEY = "motion_detect.result"

logger = logging.getLogger(__name__)


@dataclass
class MotionDetectConfig:
    """Detector settings; ROI dimensions are fractions of the lores image."""

    roi_x: float = 0.0
    roi_y: float = 0.0
    roi_width: float = 1.0
    roi_height: float = 1.0
    hskip: int = 1
    vskip: int = 1
    difference_m: float = 0.1
    difference_c: int = 10
    region_threshold: float = 0.005
    frame_period: int = 5
    verbose: bool = False


def _to_unsigned(value) -> int:
    return max(int(value), 0)


@register_stage(NAME)
class MotionDetectStage(PostProcessingStage):
    """Flags motion when enough ROI pixels change between frames."""

    def __init__(self, streams) -> None:
        super().__init__(streams)
        self.config = MotionDetectConfig()
        self.roi: tuple[int, int, int, int] = (0, 0, 0, 0)
        self.region_threshold = 0
        self._stream = None
        self._index = np.zeros((0, 0), dtype=np.intp)
        self._previous = np.zeros((0, 0), dtype=np.uint8)
        self._first_time = True
        self._motion_detected = False
        self._lock = threading.Lock()

    def name(self) -> str:
        return NAME

    def read(self, params: Mapping[str, Any]) -> None:
        self.config = MotionDetectConfig(
            roi_x=float(params.get("roi_x", 0.0)),
            roi_y=float(params.get("roi_y", 0.0)),
            roi_width=float(params.get("roi_width", 1.0)),
            roi_height=float(params.get("roi_height", 1.0)),
            hskip=int(params.get("hskip", 1)),
            vskip=int(params.get("vskip", 1)),
            difference_m=float(params.get("difference_m", 0.1)),
            difference_c=int(params.get("difference_c", 10)),
            region_threshold=float(params.get("region_threshold", 0.005)),
            frame_period=int(params.get("frame_period", 5)),
            verbose=bool(int(params.get("verbose", 0))),
        )

    def configure(self) -> None:
        info = self.streams.lores
        self._stream = info
        if info is None:
            return

        cfg = self.config
        cfg.hskip = max(cfg.hskip, 1)
        cfg.vskip = max(cfg.vskip, 1)
        width = info.width // cfg.hskip
        height = info.height // cfg.vskip
        lores_stride = info.stride * cfg.vskip

        f32 = np.float32
        roi_x = _to_unsigned(f32(cfg.roi_x) * f32(width))
        roi_y = _to_unsigned(f32(cfg.roi_y) * f32(height))
        roi_w = _to_unsigned(f32(cfg.roi_width) * f32(width))
        roi_h = _to_unsigned(f32(cfg.roi_height) * f32(height))
        threshold = _to_unsigned(f32(cfg.region_threshold) * f32(roi_w) * f32(roi_h))

        roi_x = min(roi_x, width)
        roi_y = min(roi_y, height)
        roi_w = min(roi_w, width - roi_x)
        roi_h = min(roi_h, height - roi_y)
        threshold = min(threshold, roi_w * roi_h)

        if cfg.verbose:
            logger.info(
                "Lores: %dx%d roi: (%d,%d) %dx%d threshold: %d",
                width, height, roi_x, roi_y, roi_w, roi_h, threshold,
            )

        self.roi = (roi_x, roi_y, roi_w, roi_h)
        self.region_threshold = threshold
        rows = np.arange(roi_h) + roi_y
        cols = np.arange(roi_w)
        self._index = rows[:, None] * lores_stride + roi_x * cfg.hskip + cols[None, :] * cfg.hskip
        self._previous = np.zeros((roi_h, roi_w), dtype=np.uint8)
        self._first_time = True
        self._motion_detected = False

    def process(self, request: CompletedRequest) -> bool:
        if self._stream is None:
            return False

        period = self.config.frame_period
        if period and request.sequence % period:
            return False

        pixels = np.frombuffer(request.buffers[LORES], dtype=np.uint8)
        current = pixels[self._index]

        with self._lock:
            if self._first_time:
                self._first_time = False
                self._previous = current
                request.post_process_metadata[RESULT_KEY] = self._motion_detected
                return False

            old = self._previous.astype(np.int32)
            new = current.astype(np.int32)
            self._previous = current
            threshold = np.float32(self.config.difference_m) * old.astype(np.float32) + np.float32(
                self.config.difference_c
            )
            regions = int(np.count_nonzero(np.abs(new - old) > threshold))
            motion_detected = current.size > 0 and regions >= self.region_threshold

            if self.config.verbose and motion_detected != self._motion_detected:
                logger.info("Motion %s", "detected" if motion_detected else "stopped")

            self._motion_detected = motion_detected
            request.post_process_metadata[RESULT_KEY] = motion_detected

        return False