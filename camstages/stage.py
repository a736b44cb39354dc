"""Base class, registry and shared helpers for post-processing stages."""

from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

import numpy as np

MAIN = "main"
LORES = "lores"
STILL = "still"


@dataclass
class StreamInfo:
    """Geometry and format of one image stream."""

    width: int = 0
    height: int = 0
    stride: int = 0
    pixel_format: str = "YUV420"
    colour_space: Optional[str] = None


@dataclass
class StreamConfig:
    """The part of a stream configuration a stage may adjust."""

    buffer_count: int = 0


@dataclass
class StreamSet:
    """The streams a camera session provides; absent streams are None."""

    main: Optional[StreamInfo] = None
    lores: Optional[StreamInfo] = None
    still: Optional[StreamInfo] = None


@dataclass
class CompletedRequest:
    """A finished capture: pixel buffers keyed by stream role, plus metadata."""

    sequence: int = 0
    buffers: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    post_process_metadata: dict[str, Any] = field(default_factory=dict)


class PostProcessingStage(abc.ABC):
    """A step that inspects or modifies completed requests."""

    def __init__(self, streams: StreamSet) -> None:
        self.streams = streams
        self.use_case: Optional[str] = None
        self.running = False

    @abc.abstractmethod
    def name(self) -> str:
        """The name the stage is registered under."""

    def read(self, params: Mapping[str, Any]) -> None:
        """Read the stage's parameters."""

    def adjust_config(self, use_case: str, config: StreamConfig) -> None:
        """Adjust the stream configuration before the camera is configured.

        The base stage leaves the configuration as it is and only records the
        use case it was asked about.
        """
        self.use_case = use_case

    def configure(self) -> None:
        """Called once the streams are known."""

    def start(self) -> None:
        """Called when the camera starts; marks the stage as running."""
        self.running = True

    @abc.abstractmethod
    def process(self, request: CompletedRequest) -> bool:
        """Process a request; return True if it is to be dropped."""

    def stop(self) -> None:
        """Called when the camera stops; marks the stage as no longer running."""
        self.running = False

    def teardown(self) -> None:
        """Called when the streams are torn down; forgets the session state."""
        self.running = False
        self.use_case = None


def yuv420_to_rgb(src, src_info: StreamInfo, dst_info: StreamInfo) -> np.ndarray:
    """Convert a YUV420 image to packed RGB, cropping from the centre.

    Returns a flat uint8 array of ``dst_info.height * dst_info.stride`` bytes.
    """
    if src_info.width < dst_info.width or src_info.height < dst_info.height:
        raise ValueError("destination image must not be larger than the source")
    if dst_info.stride < 3 * dst_info.width:
        raise ValueError("destination stride too small for RGB row")

    data = np.frombuffer(src, dtype=np.uint8)
    off_x = ((src_info.width - dst_info.width) // 2) & ~1
    off_y = ((src_info.height - dst_info.height) // 2) & ~1
    y_size = src_info.height * src_info.stride
    half_stride = src_info.stride // 2
    u_size = (src_info.height // 2) * half_stride

    rows = np.arange(dst_info.height) + off_y
    cols = np.arange(dst_info.width) + off_x
    luma = data[rows[:, None] * src_info.stride + cols[None, :]].astype(np.float64)
    uv_index = y_size + (rows // 2)[:, None] * half_stride + (cols // 2)[None, :]
    u = data[uv_index].astype(np.float64) - 128
    v = data[uv_index + u_size].astype(np.float64) - 128

    r = luma + 1.402 * v
    g = luma - 0.345 * u - 0.714 * v
    b = luma + 1.771 * u
    rgb = np.clip(np.trunc(np.stack([r, g, b], axis=-1)), 0, 255).astype(np.uint8)

    output = np.zeros(dst_info.height * dst_info.stride, dtype=np.uint8)
    view = output.reshape(dst_info.height, dst_info.stride)
    view[:, : 3 * dst_info.width] = rgb.reshape(dst_info.height, 3 * dst_info.width)
    return output


def execution_time(func: Callable[..., Any], *args: Any) -> float:
    """Run ``func(*args)`` and return the time it took in microseconds."""
    start = time.perf_counter()
    func(*args)
    return (time.perf_counter() - start) * 1e6


_STAGES: dict[str, type] = {}


def register_stage(name: str) -> Callable[[type], type]:
    """Class decorator registering a stage under ``name``."""

    def decorator(cls: type) -> type:
        _STAGES[name] = cls
        return cls

    return decorator


def get_post_processing_stages() -> Mapping[str, type]:
    """Read-only view of all registered stages, by name."""
    return MappingProxyType(_STAGES)