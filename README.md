# camstages

Post-processing stages for camera frames held as YUV420 buffers. A stage is
given the streams of a camera session (`camstages.stage.StreamSet`), is
configured once the streams are known, and then processes completed requests
(`camstages.stage.CompletedRequest`): it may read or change the pixel buffers
and attach entries to `post_process_metadata` for later stages to use.
`process` returns `True` when the request is to be dropped.

## Stages

- `negate` (`camstages.negate.NegateStage`): inverts every byte of the main
  stream buffer in place.
- `motion_detect` (`camstages.motion_detect.MotionDetectStage`): compares a
  region of interest of the low-resolution stream with the previous frame it
  looked at and sets `motion_detect.result`. Settings (`roi_x`, `roi_y`,
  `roi_width`, `roi_height`, `hskip`, `vskip`, `difference_m`, `difference_c`,
  `region_threshold`, `frame_period`, `verbose`) are read by `read` into a
  `MotionDetectConfig`.
- `object_classify_tf` (`camstages.object_classify_tf.ObjectClassifyTfStage`):
  keeps the top classes from an 8-bit classifier output, sets
  `object_classify.results` and, with `display_labels`, `annotate.text`.
- `object_detect_tf` (`camstages.object_detect_tf.ObjectDetectTfStage`):
  turns box, class and score outputs into `camstages.object_detect.Detection`
  objects in main-stream coordinates, merging overlapping boxes of the same
  class, and sets `object_detect.results`.
- `pose_estimation_tf` (`camstages.pose_estimation_tf.PoseEstimationTfStage`):
  finds the location and confidence of 17 body features and sets
  `pose_estimation.locations` and `pose_estimation.confidences`.
- `segmentation_tf` (`camstages.segmentation_tf.SegmentationTfStage`): builds
  a per-pixel category map, sets `segmentation.result` to a `Segmentation`,
  and with `draw` paints the map in greyscale into the bottom right corner of
  the main image.

The four network stages build on `camstages.tf_stage.TfStage`, which copies
the low-resolution image on every `refresh_rate`-th frame, converts it to RGB
on a worker thread, runs the model and hands its outputs to
`interpret_outputs`. The model is supplied by the caller as a
`camstages.tf_stage.Interpreter`: a callable taking the input tensor and
returning the output tensors, together with the input shape, input type
(`uint8` or `float32`) and output shapes.

Stages register themselves by name when their module is imported;
`camstages.stage.get_post_processing_stages()` returns a read-only mapping
from names to stage classes, and `camstages.stage.register_stage` is the
decorator that adds to it.

## Building blocks

- `camstages.pwl.Pwl`: piecewise linear functions with evaluation,
  inversion, composition, combination (`map2`, `combine`), domain matching and
  lookup-table generation.
- `camstages.stage.yuv420_to_rgb`: crops a YUV420 image from its centre and
  converts it to packed RGB.
- `camstages.stage.execution_time`: times a call, in microseconds.
- `camstages.object_detect.Rectangle`: area and intersection of boxes.

## Example

```python
import numpy as np

from camstages.pwl import Pwl
from camstages.negate import NegateStage
from camstages.stage import CompletedRequest, StreamInfo, StreamSet

curve = Pwl.from_values([0, 0, 100, 200])
print(curve.eval(50))            # 100.0

info = StreamInfo(width=4, height=2, stride=4)
stage = NegateStage(StreamSet(main=info))
stage.configure()
frame = np.zeros(12, dtype=np.uint8)
stage.process(CompletedRequest(buffers={"main": frame}))
print(frame[:4])                 # [255 255 255 255]
```

## What it does not do

The package holds no camera driver, no HDR stage, no histogram helper and no
preview window: frames and their stream geometry come from the caller, and
results are left in the request's metadata or buffers. It does not load model
files itself; the network stages run whatever `Interpreter` they are given.
There is no command-line program.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```