"""Stage detecting objects with an SSD-style network on the lores image."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from camstages.object_classify_tf import read_labels
from camstages.object_detect import Detection, Rectangle
from camstages.stage import CompletedRequest, StreamSet, register_stage
from camstages.tf_stage import Interpreter, TfConfig, TfStage

NAME = "object_detect_tf"
RESULTS_KEY = "object_detect.results"
WIDTH = 300
HEIGHT = 300
_OUTPUT_SHAPE = (1, 10, 4)

logger = logging.getLogger(__name__)


@dataclass
class ObjectDetectTfConfig(TfConfig):
    """Detector settings."""

    confidence_threshold: float = 0.5
    overlap_threshold: float = 0.5


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


@register_stage(NAME)
class ObjectDetectTfStage(TfStage):
    """Finds labelled boxes in the image, in main stream coordinates."""

    def __init__(self, streams: StreamSet, interpreter: Optional[Interpreter] = None) -> None:
        super().__init__(streams, WIDTH, HEIGHT, interpreter)
        self.config = ObjectDetectTfConfig()
        self.labels: list[str] = []
        self.output_results: list[Detection] = []

    @property
    def label_count(self) -> int:
        return len(self.labels)

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.confidence_threshold = float(params.get("confidence_threshold", 0.5))
        cfg.overlap_threshold = float(params.get("overlap_threshold", 0.5))

        path = str(params.get("labels_file", ""))
        try:
            # The first line of the labels file is not a label.
            self.labels = read_labels(path)[1:]
        except OSError as exc:
            raise RuntimeError("ObjectDetectTfStage: Failed to load labels file") from exc
        if cfg.verbose:
            logger.info("Read %d labels", self.label_count)

        shapes = self.interpreter.output_shapes
        if not shapes or tuple(shapes[0]) != _OUTPUT_SHAPE:
            raise RuntimeError("ObjectDetectTfStage: unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("ObjectDetectTfStage: Main stream is required")

    def interpret_outputs(self, outputs: Sequence[np.ndarray]) -> None:
        boxes = np.asarray(outputs[0], dtype=np.float32)
        classes = np.asarray(outputs[1], dtype=np.float32).reshape(-1)
        scores = np.asarray(outputs[2], dtype=np.float32).reshape(-1)
        num_detections = boxes.shape[1]
        boxes = boxes.reshape(-1, 4)

        lores, main = self.lores_stream, self.main_stream
        threshold = np.float32(self.config.confidence_threshold)
        overlap_threshold = np.float32(self.config.overlap_threshold)
        fw, fh = np.float32(WIDTH), np.float32(HEIGHT)

        results: list[Detection] = []
        for i in range(num_detections):
            score = scores[i]
            if score < threshold:
                continue
            top, left, bottom, right = boxes[i]
            # Coordinates in the image fed to the network.
            y = _clamp(int(fh * top), 0, HEIGHT)
            x = _clamp(int(fw * left), 0, WIDTH)
            h = _clamp(int(fh * bottom - np.float32(y)), 0, HEIGHT)
            w = _clamp(int(fw * right - np.float32(x)), 0, WIDTH)
            # The network saw a centre crop of the lores image.
            y += (lores.height - HEIGHT) // 2
            x += (lores.width - WIDTH) // 2
            # The lores image is a pure scaling of the main one.
            y = y * main.height // lores.height
            x = x * main.width // lores.width
            h = h * main.height // lores.height
            w = w * main.width // lores.width

            category = int(classes[i])
            detection = Detection(category, self.labels[category], float(score), Rectangle(x, y, w, h))

            # Merge with an overlapping box of the same category, keeping the more confident.
            for k, previous in enumerate(results):
                if previous.category != category:
                    continue
                prev_area = previous.box.area()
                new_area = detection.box.area()
                overlap = previous.box.bounded_to(detection.box).area()
                if overlap > overlap_threshold * prev_area or overlap > overlap_threshold * new_area:
                    if detection.confidence > previous.confidence:
                        results[k] = detection
                    break
            else:
                results.append(detection)

        self.output_results = results
        if self.config.verbose:
            for detection in results:
                logger.info("%s", detection)

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[RESULTS_KEY] = list(self.output_results)