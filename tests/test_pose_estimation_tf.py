import numpy as np
import pytest

from camstages.pose_estimation_tf import (
    CONFIDENCES_KEY,
    FEATURE_SIZE,
    LOCATIONS_KEY,
    PoseEstimationTfStage,
)
from camstages.stage import LORES, CompletedRequest, StreamInfo, StreamSet
from camstages.tf_stage import Interpreter

MAIN_W, MAIN_H = 640, 480
LORES_W, LORES_H = 320, 258


def _outputs():
    heatmaps = np.zeros((1, 9, 9, 17), dtype=np.float32)
    heatmaps[0, 8, 8, 0] = 5.0
    offsets = np.zeros((1, 9, 9, 34), dtype=np.float32)
    offsets[0, 0, 0, 2] = 4.0
    offsets[0, 0, 0, 2 + 17] = -3.0
    return [heatmaps, offsets]


def _interpreter(shapes=((1, 9, 9, 17), (1, 9, 9, 34))):
    return Interpreter(
        model=lambda tensor: _outputs(),
        input_shape=(1, 257, 257, 3),
        input_dtype=np.uint8,
        output_shapes=list(shapes),
    )


def _streams(main=True, lores=True):
    return StreamSet(
        main=StreamInfo(MAIN_W, MAIN_H, MAIN_W) if main else None,
        lores=StreamInfo(LORES_W, LORES_H, LORES_W) if lores else None,
    )


def _stage(**kwargs):
    stage = PoseEstimationTfStage(_streams(**kwargs), _interpreter())
    stage.configure()
    return stage


def test_name():
    assert _stage().name() == "pose_estimation_tf"


def test_corner_heat_maps_to_full_image_size():
    stage = _stage()
    stage.interpret_outputs(_outputs())
    assert stage.heats[0] == (8, 8)
    assert stage.locations[0] == (MAIN_W, MAIN_H)
    assert stage.confidences[0] == 5.0


def test_offsets_are_added_to_location():
    stage = _stage()
    stage.interpret_outputs(_outputs())
    assert stage.heats[2] == (0, 0)
    assert stage.locations[2] == (-3, 4)
    assert stage.locations[1] == (0, 0)


def test_fractional_offset_truncates_towards_zero():
    stage = _stage()
    heatmaps, offsets = _outputs()
    offsets[0, 0, 0, 5] = -2.5
    stage.interpret_outputs([heatmaps, offsets])
    assert stage.locations[5][1] == -2


def test_one_result_per_feature():
    stage = _stage()
    stage.interpret_outputs(_outputs())
    assert len(stage.locations) == FEATURE_SIZE
    assert len(stage.confidences) == FEATURE_SIZE
    assert len(stage.heats) == FEATURE_SIZE


def test_main_stream_required():
    stage = PoseEstimationTfStage(_streams(main=False), _interpreter())
    with pytest.raises(RuntimeError):
        stage.configure()


def test_read_rejects_unexpected_output_shape():
    stage = PoseEstimationTfStage(_streams(), _interpreter(shapes=((1, 9, 9, 16), (1, 9, 9, 34))))
    with pytest.raises(RuntimeError):
        stage.read({})


def test_read_accepts_expected_shape():
    interpreter = _interpreter()
    stage = PoseEstimationTfStage(_streams(), interpreter)
    stage.read({})
    assert interpreter.num_threads == 2


def test_process_without_lores_does_nothing():
    stage = _stage(lores=False)
    request = CompletedRequest(sequence=0)
    assert stage.process(request) is False
    assert LOCATIONS_KEY not in request.post_process_metadata


def test_process_end_to_end():
    stage = _stage()
    frame = bytes(LORES_W * LORES_H * 3 // 2)
    first = CompletedRequest(sequence=0, buffers={LORES: frame})
    assert stage.process(first) is False
    stage.stop()
    second = CompletedRequest(sequence=1, buffers={LORES: frame})
    stage.process(second)
    meta = second.post_process_metadata
    assert meta[LOCATIONS_KEY][0] == (MAIN_W, MAIN_H)
    assert meta[CONFIDENCES_KEY][0] == 5.0