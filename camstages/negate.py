"""Stage that inverts every byte of the main image."""

from __future__ import annotations

import numpy as np

from camstages.stage import MAIN, CompletedRequest, PostProcessingStage, register_stage

NAME = "negate"


@register_stage(NAME)
class NegateStage(PostProcessingStage):
    """Negates the main stream image in place."""

    def name(self) -> str:
        return NAME

    def configure(self) -> None:
        self._stream = self.streams.main

    def process(self, request: CompletedRequest) -> bool:
        if getattr(self, "_stream", None) is None:
            raise RuntimeError("NegateStage: no main stream")
        pixels = np.frombuffer(request.buffers[MAIN], dtype=np.uint8)
        np.bitwise_xor(pixels, 0xFF, out=pixels)
        return False