"""Stage producing a per-pixel category map from a segmentation network."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from camstages.object_classify_tf import read_labels
from camstages.stage import MAIN, CompletedRequest, StreamSet, register_stage
from camstages.tf_stage import Interpreter, TfConfig, TfStage

NAME = "segmentation_tf"
RESULT_KEY = "segmentation.result"
WIDTH = 257
HEIGHT = 257

logger = logging.getLogger(__name__)


@dataclass
class Segmentation:
    """A segmentation map: one category index per pixel, plus the category labels."""

    width: int
    height: int
    labels: list[str]
    segmentation: np.ndarray = field(repr=False)


@dataclass
class SegmentationTfConfig(TfConfig):
    """Segmentation settings."""

    draw: bool = True
    threshold: int = 5000  # pixels in a category before its name is reported


def _byte_view(buffer) -> np.ndarray:
    if isinstance(buffer, np.ndarray):
        return buffer.reshape(-1).view(np.uint8)
    return np.frombuffer(buffer, dtype=np.uint8)


@register_stage(NAME)
class SegmentationTfStage(TfStage):
    """Segments the lores image and optionally draws the map into the main image."""

    def __init__(self, streams: StreamSet, interpreter: Optional[Interpreter] = None) -> None:
        super().__init__(streams, WIDTH, HEIGHT, interpreter)
        self.config = SegmentationTfConfig()
        self.labels: list[str] = []
        self.segmentation = np.zeros(WIDTH * HEIGHT, dtype=np.uint8)

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.draw = bool(int(params.get("draw", 1)))
        cfg.threshold = int(params.get("threshold", 5000))
        path = str(params.get("labels_file", ""))
        try:
            self.labels = read_labels(path)
        except OSError as exc:
            raise RuntimeError("SegmentationTfStage: Failed to load labels file") from exc

        shapes = self.interpreter.output_shapes
        shape = tuple(shapes[0]) if shapes else ()
        if len(shape) != 4 or shape[1] != HEIGHT or shape[2] != WIDTH or shape[3] != len(self.labels):
            raise RuntimeError("SegmentationTfStage: Unexpected output tensor size")

    def check_configuration(self) -> None:
        if self.main_stream is None and self.config.draw:
            raise RuntimeError("SegmentationTfStage: Main stream is required for drawing")

    def interpret_outputs(self, outputs: Sequence[np.ndarray]) -> None:
        num_categories = len(self.labels)
        scores = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        scores = scores[: WIDTH * HEIGHT * num_categories].reshape(WIDTH * HEIGHT, num_categories)
        # For each pixel pick the category with the largest confidence.
        indices = np.argmax(scores, axis=1)
        self.segmentation = indices.astype(np.uint8)

        if self.config.verbose:
            counts = np.bincount(indices, minlength=num_categories)
            ranked = sorted(enumerate(counts.tolist()), key=lambda item: item[1], reverse=True)
            summary = ", ".join(
                f"{self.labels[index]} ({count})"
                for index, count in ranked
                if count >= self.config.threshold
            )
            logger.info("%s", summary)

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[RESULT_KEY] = Segmentation(
            WIDTH, HEIGHT, list(self.labels), self.segmentation.copy()
        )
        if not self.config.draw:
            return

        # Draw the map, in greyscale, in the bottom right corner of the main image.
        main = self.main_stream
        if main.width < WIDTH or main.height < HEIGHT:
            raise ValueError("SegmentationTfStage: main image too small to draw on")
        out = _byte_view(request.buffers[MAIN])
        y_offset = main.height - HEIGHT
        x_offset = main.width - WIDTH
        scale = 255 // len(self.labels)

        rows = np.arange(HEIGHT)[:, None]
        cols = np.arange(WIDTH)[None, :]
        seg = self.segmentation.reshape(HEIGHT, WIDTH).astype(np.int64)
        out[(rows + y_offset) * main.stride + x_offset + cols] = ((scale * seg) & 0xFF).astype(np.uint8)

        u_start = main.height * main.stride
        half_stride = main.stride // 2
        uv_size = (main.height // 2) * half_stride
        half_rows = np.arange(HEIGHT // 2)[:, None]
        half_cols = np.arange(WIDTH // 2)[None, :]
        index = u_start + (half_rows + y_offset // 2) * half_stride + x_offset // 2 + half_cols
        out[index] = 128
        out[index + uv_size] = 128