"""Stage estimating the positions of body joints with a pose network."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from camstages.stage import CompletedRequest, StreamSet, register_stage
from camstages.tf_stage import Interpreter, TfConfig, TfStage

NAME = "pose_estimation_tf"
LOCATIONS_KEY = "pose_estimation.locations"
CONFIDENCES_KEY = "pose_estimation.confidences"
FEATURE_SIZE = 17
HEATMAP_DIMS = 9
WIDTH = 257
HEIGHT = 257
_OUTPUT_SHAPE = (1, HEATMAP_DIMS, HEATMAP_DIMS, FEATURE_SIZE)


@register_stage(NAME)
class PoseEstimationTfStage(TfStage):
    """Finds the most likely location and confidence of each of 17 body features."""

    def __init__(self, streams: StreamSet, interpreter: Optional[Interpreter] = None) -> None:
        # The model expects 257x257 images.
        super().__init__(streams, WIDTH, HEIGHT, interpreter)
        self.config = TfConfig()
        self.heats: list[tuple[int, int]] = []
        self.confidences: list[float] = []
        self.locations: list[tuple[int, int]] = []

    def name(self) -> str:
        return NAME

    def read_extras(self, params: Mapping[str, Any]) -> None:
        # Nothing to read, but the output tensor dimensions can be checked.
        shapes = self.interpreter.output_shapes
        if not shapes or len(shapes[0]) < 4 or tuple(shapes[0][:4]) != _OUTPUT_SHAPE:
            raise RuntimeError("PoseEstimationTfStage: Unexpected output dimensions")

    def check_configuration(self) -> None:
        if self.main_stream is None:
            raise RuntimeError("PoseEstimationTfStage: Main stream is required")

    def interpret_outputs(self, outputs: Sequence[np.ndarray]) -> None:
        heatmaps = np.asarray(outputs[0], dtype=np.float32).reshape(-1)
        offsets = np.asarray(outputs[1], dtype=np.float32).reshape(-1)
        cells = HEATMAP_DIMS * HEATMAP_DIMS
        grid = heatmaps[: cells * FEATURE_SIZE].reshape(cells, FEATURE_SIZE)

        # The first cell holding the maximum wins, as in a strict "greater than" scan.
        best = np.argmax(grid, axis=0)
        heats = [(int(cell % HEATMAP_DIMS), int(cell // HEATMAP_DIMS)) for cell in best]
        confidences = [float(grid[cell, feature]) for feature, cell in enumerate(best)]

        main = self.main_stream
        locations = []
        for feature, (x, y) in enumerate(heats):
            j = (FEATURE_SIZE * 2) * (HEATMAP_DIMS * y + x) + feature
            loc_y = np.float32((y * main.height) // (HEATMAP_DIMS - 1)) + offsets[j]
            loc_x = np.float32((x * main.width) // (HEATMAP_DIMS - 1)) + offsets[j + FEATURE_SIZE]
            locations.append((int(loc_x), int(loc_y)))

        self.heats = heats
        self.confidences = confidences
        self.locations = locations

    def apply_results(self, request: CompletedRequest) -> None:
        request.post_process_metadata[LOCATIONS_KEY] = list(self.locations)
        request.post_process_metadata[CONFIDENCES_KEY] = list(self.confidences)