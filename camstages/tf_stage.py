"""Base class for stages that run a neural network on the low resolution stream."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np

from camstages.stage import (
    LORES,
    CompletedRequest,
    PostProcessingStage,
    StreamInfo,
    StreamSet,
    execution_time,
    yuv420_to_rgb,
)

logger = logging.getLogger(__name__)

_SUPPORTED_INPUT_TYPES = (np.dtype(np.uint8), np.dtype(np.float32))


@dataclass
class TfConfig:
    """Settings shared by all network stages."""

    number_of_threads: int = 3
    refresh_rate: int = 5
    model_file: str = ""
    verbose: bool = False
    normalisation_offset: float = 127.5
    normalisation_scale: float = 127.5


@dataclass
class Interpreter:
    """A loaded model that maps an input tensor of fixed shape and type to outputs."""

    model: Callable[[np.ndarray], Optional[Sequence[Any]]]
    input_shape: tuple
    input_dtype: Any = np.uint8
    output_shapes: Sequence[tuple] = ()
    num_threads: Optional[int] = None

    @property
    def input_bytes(self) -> int:
        return int(np.prod(self.input_shape)) * np.dtype(self.input_dtype).itemsize

    def invoke(self, inputs) -> list[np.ndarray]:
        """Run the model on ``inputs`` and return its output tensors."""
        tensor = np.asarray(inputs, dtype=self.input_dtype)
        expected = int(np.prod(self.input_shape))
        if tensor.size != expected:
            raise ValueError(f"input has {tensor.size} elements, model expects {expected}")
        outputs = self.model(tensor.reshape(self.input_shape))
        if outputs is None:
            raise RuntimeError("TfStage: Failed to invoke model")
        return [np.asarray(output) for output in outputs]


class TfStage(PostProcessingStage):
    """Runs a network asynchronously on the lores image and attaches its results.

    Derived classes provide ``name`` and override the hooks ``read_extras``,
    ``check_configuration``, ``interpret_outputs`` and ``apply_results``.
    """

    def __init__(self, streams: StreamSet, tf_w: int, tf_h: int, interpreter: Optional[Interpreter] = None) -> None:
        super().__init__(streams)
        if tf_w <= 0 or tf_h <= 0:
            raise ValueError("TfStage: Bad input dimensions")
        self.tf_w = int(tf_w)
        self.tf_h = int(tf_h)
        self.interpreter = interpreter
        self.config = TfConfig()
        self.lores_stream: Optional[StreamInfo] = None
        self.main_stream: Optional[StreamInfo] = None
        self._future_lock = threading.Lock()
        self._output_lock = threading.Lock()
        self._worker: Optional[threading.Thread] = None
        self._lores_copy: Optional[np.ndarray] = None

    def read(self, params: Mapping[str, Any]) -> None:
        cfg = self.config
        cfg.number_of_threads = int(params.get("number_of_threads", 2))
        cfg.refresh_rate = int(params.get("refresh_rate", 5))
        cfg.model_file = str(params.get("model_file", ""))
        cfg.verbose = bool(int(params.get("verbose", 0)))
        cfg.normalisation_offset = float(params.get("normalisation_offset", 127.5))
        cfg.normalisation_scale = float(params.get("normalisation_scale", 127.5))

        self._initialise()
        self.read_extras(params)

    def _initialise(self) -> None:
        interpreter = self.interpreter
        if interpreter is None:
            raise RuntimeError("TfStage: Failed to load model")
        logger.info("TfStage: Loaded model %s", self.config.model_file)

        if self.config.number_of_threads != -1:
            interpreter.num_threads = self.config.number_of_threads

        dtype = np.dtype(interpreter.input_dtype)
        if dtype not in _SUPPORTED_INPUT_TYPES:
            raise RuntimeError("TfStage: Input tensor data type not supported")
        # Assume an RGB input; a mismatch usually means the wrong model.
        expected = self.tf_w * self.tf_h * 3 * dtype.itemsize
        if interpreter.input_bytes != expected:
            raise RuntimeError("TfStage: Input tensor size mismatch")

    def configure(self) -> None:
        verbose = self.config.verbose
        lores = self.streams.lores
        if lores is not None:
            if verbose:
                logger.info("TfStage: Low resolution stream is %dx%d", lores.width, lores.height)
            if self.tf_w > lores.width or self.tf_h > lores.height:
                logger.error("TfStage: WARNING: Low resolution image too small")
                lores = None
        elif verbose:
            logger.info("TfStage: no low resolution stream")
        self.lores_stream = lores

        main = self.streams.main
        if main is not None:
            if verbose:
                logger.info("TfStage: Main stream is %dx%d", main.width, main.height)
        elif verbose:
            logger.info("TfStage: No main stream")
        self.main_stream = main

        self.check_configuration()

    def process(self, request: CompletedRequest) -> bool:
        if self.lores_stream is None:
            return False

        with self._future_lock:
            rate = self.config.refresh_rate
            idle = self._worker is None or not self._worker.is_alive()
            if rate and request.sequence % rate == 0 and idle:
                # Copy the lores image and let the worker convert it to RGB.
                self._lores_copy = np.frombuffer(request.buffers[LORES], dtype=np.uint8).copy()
                self._worker = threading.Thread(target=self._timed_inference, daemon=True)
                self._worker.start()

        with self._output_lock:
            self.apply_results(request)
        return False

    def _timed_inference(self) -> None:
        taken = execution_time(self.run_inference)
        if self.config.verbose:
            logger.info("TfStage: Inference time: %.0f us", taken)

    def stop(self) -> None:
        worker = self._worker
        if worker is not None:
            worker.join()

    def run_inference(self) -> None:
        """Convert the latest lores copy to RGB, run the model and interpret its outputs."""
        lores = self.lores_stream
        if lores is None or self._lores_copy is None:
            raise RuntimeError("TfStage: no low resolution image to run on")
        if self.interpreter is None:
            raise RuntimeError("TfStage: Failed to load model")

        tf_info = StreamInfo(width=self.tf_w, height=self.tf_h, stride=self.tf_w * 3)
        rgb = yuv420_to_rgb(self._lores_copy, lores, tf_info)

        if np.dtype(self.interpreter.input_dtype) == np.float32:
            offset = np.float32(self.config.normalisation_offset)
            scale = np.float32(self.config.normalisation_scale)
            tensor = ((rgb.astype(np.float32) - offset) / scale).astype(np.float32)
        else:
            tensor = rgb

        outputs = self.interpreter.invoke(tensor)
        with self._output_lock:
            self.interpret_outputs(outputs)

    def read_extras(self, params: Mapping[str, Any]) -> None:
        """Read stage-specific parameters; may also check the model."""

    def check_configuration(self) -> None:
        """Check the stream configuration, raising if it is unusable."""

    def interpret_outputs(self, outputs: Sequence[np.ndarray]) -> None:
        """Turn the model outputs into results; runs on the worker thread."""

    def apply_results(self, request: CompletedRequest) -> None:
        """Attach the latest results to a request; runs synchronously."""