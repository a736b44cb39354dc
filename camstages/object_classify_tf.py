"""Stage reporting the most likely image classes from a classifier network."""

from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np

from camstages.stage import CompletedRequest, StreamSet, register_stage
from camstages.tf_stage import Interpreter, TfConfig, TfStage

NAME = "object_classify_tf"
RESULTS_KEY = "object_classify.results"
ANNOTATE_KEY = "annotate.text"
DEFAULT_LABELS_FILE = "/home/pi/models/labels.txt"

logger = logging.getLogger(__name__)


@dataclass
class ObjectClassifyTfConfig(TfConfig):
    """Classifier settings."""

    number_of_results: int = 3
    threshold_high: float = 0.2
    threshold_low: float = 0.1
    display_labels: bool = True


def read_labels(path: str) -> list[str]:
    """Read one label per line; a final newline does not add an empty label."""
    with open(path, encoding="utf-8", newline="") as f:
        text = f.read()
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def top_results(
    prediction: Iterable,
    num_results: int,
    threshold_low: float,
    threshold_high: float,
    previous: Iterable[int] = (),
) -> list[tuple[float, int]]:
    """Best (confidence, index) pairs, descending, from 8-bit predictions.

    A class is kept if it reaches ``threshold_high``, or if it reaches
    ``threshold_low`` and its index is among ``previous``.
    """
    low = np.float32(threshold_low)
    high = np.float32(threshold_high)
    kept = set(previous)
    candidates = []
    for index, value in enumerate(np.asarray(prediction).reshape(-1)):
        confidence = np.float32(float(value) / 255.0)
        if confidence < low:
            continue
        if confidence >= high or index in kept:
            candidates.append((float(confidence), index))
    return heapq.nlargest(max(num_results, 0), candidates)


def _short_label(label: str) -> str:
    # The text between the first ':' and the first ',' that follows it.
    begin = label.find(":") + 1
    end = label.find(",")
    if end == -1 or end < begin:
        return label[begin:]
    return label[begin:end]


def format_annotation(results: Sequence[tuple[str, float]]) -> str:
    """Annotation text such as ``Detected: tench 0.5, goldfish 0.25``."""
    parts = [f"{_short_label(label)} {confidence:.2g}" for label, confidence in results]
    return "Detected: " + ", ".join(parts)


@register_stage(NAME)
class ObjectClassifyTfStage(TfStage):
    """Classifies the lores image and reports the top results."""

    def __init__(self, streams: StreamSet, interpreter: Optional[Interpreter] = None) -> None:
        # The model expects 224x224 images.
        super().__init__(streams, 224, 224, interpreter)
        self.config = ObjectClassifyTfConfig()
        self.labels: list[str] = []
        self.output_results: list[tuple[str, float]] = []
        self._top: list[tuple[float, int]] = []

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_results = int(params.get("number_of_results", 3))
        cfg.threshold_high = float(params.get("threshold_high", 0.2))
        cfg.threshold_low = float(params.get("threshold_low", 0.1))
        cfg.display_labels = bool(int(params.get("display_labels", 1)))

        path = str(params.get("labels_file", DEFAULT_LABELS_FILE))
        try:
            self.labels = read_labels(path)
        except OSError as exc:
            raise RuntimeError("ObjectClassifyTfStage: Failed to load labels file") from exc

        # A mismatch usually means the wrong model or the wrong labels file.
        shapes = self.interpreter.output_shapes
        if not shapes or not shapes[0] or shapes[0][-1] != len(self.labels):
            raise RuntimeError("ObjectClassifyTfStage: Label count mismatch")

    def interpret_outputs(self, outputs: Sequence[np.ndarray]) -> None:
        cfg = self.config
        prediction = np.asarray(outputs[0])
        size = prediction.shape[-1] if prediction.ndim else prediction.size
        flat = prediction.reshape(-1)[:size]
        previous = [index for _, index in self._top]
        self._top = top_results(flat, cfg.number_of_results, cfg.threshold_low, cfg.threshold_high, previous)
        self.output_results = [(self.labels[index], confidence) for confidence, index in self._top]

        if cfg.verbose:
            for label, confidence in self.output_results:
                logger.info("%s : %f", label, confidence)

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[RESULTS_KEY] = list(self.output_results)
        if self.config.display_labels:
            request.post_process_metadata[ANNOTATE_KEY] = format_annotation(self.output_results)