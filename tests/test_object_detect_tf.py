import numpy as np
import pytest

from camstages.object_detect import Rectangle
from camstages.object_detect_tf import ObjectDetectTfStage
from camstages.stage import CompletedRequest, StreamInfo, StreamSet
from camstages.tf_stage import Interpreter


def make_interpreter(output_shape=(1, 10, 4)):
    return Interpreter(
        model=lambda tensor: [],
        input_shape=(1, 300, 300, 3),
        output_shapes=[output_shape, (1, 10), (1, 10), (1,)],
    )


def make_stage(tmp_path, lores=300, main=300, interpreter=None, **params):
    labels = tmp_path / "labels.txt"
    labels.write_text("???\nperson\ncar\ndog\n")
    stage = ObjectDetectTfStage(
        StreamSet(
            main=StreamInfo(main, main, main) if main else None,
            lores=StreamInfo(lores, lores, lores),
        ),
        interpreter or make_interpreter(),
    )
    stage.read({"labels_file": str(labels), **params})
    return stage


def outputs(boxes, classes, scores):
    return [
        np.array([boxes], dtype=np.float32),
        np.array([classes], dtype=np.float32),
        np.array([scores], dtype=np.float32),
    ]


BOX = [0.25, 0.5, 0.75, 1.0]


def detect(stage, boxes, classes, scores):
    stage.interpret_outputs(outputs(boxes, classes, scores))
    return stage.output_results


def test_read_extras_discards_first_line(tmp_path):
    stage = make_stage(tmp_path)
    assert stage.labels == ["person", "car", "dog"]
    assert stage.label_count == 3
    assert stage.config.confidence_threshold == 0.5
    assert stage.config.overlap_threshold == 0.5


def test_unexpected_output_dimensions(tmp_path):
    with pytest.raises(RuntimeError, match="unexpected output dimensions"):
        make_stage(tmp_path, interpreter=make_interpreter((1, 5, 4)))


def test_missing_labels_file():
    stage = ObjectDetectTfStage(StreamSet(), make_interpreter())
    with pytest.raises(RuntimeError, match="Failed to load labels"):
        stage.read({})


def test_main_stream_required(tmp_path):
    stage = make_stage(tmp_path, main=None)
    with pytest.raises(RuntimeError, match="Main stream is required"):
        stage.configure()


def test_single_detection(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    results = detect(stage, [BOX], [1], [0.9])
    assert len(results) == 1
    det = results[0]
    assert det.category == 1
    assert det.name == "car"
    assert det.confidence == pytest.approx(0.9)
    assert det.box == Rectangle(150, 75, 150, 150)


def test_scaled_to_main_stream(tmp_path):
    small = make_stage(tmp_path)
    small.configure()
    base = detect(small, [BOX], [1], [0.9])[0].box
    big = make_stage(tmp_path, main=600)
    big.configure()
    scaled = detect(big, [BOX], [1], [0.9])[0].box
    assert scaled == Rectangle(base.x * 2, base.y * 2, base.width * 2, base.height * 2)


def test_centre_crop_offset(tmp_path):
    small = make_stage(tmp_path)
    small.configure()
    base = detect(small, [BOX], [0], [0.9])[0].box
    large = make_stage(tmp_path, lores=400, main=400)
    large.configure()
    shifted = detect(large, [BOX], [0], [0.9])[0].box
    assert (shifted.x, shifted.y) == (base.x + 50, base.y + 50)
    assert (shifted.width, shifted.height) == (base.width, base.height)


def test_overlapping_same_category_keeps_most_confident(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    results = detect(stage, [BOX, BOX], [1, 1], [0.6, 0.9])
    assert len(results) == 1
    assert results[0].confidence == pytest.approx(0.9)


def test_overlap_keeps_first_when_more_confident(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    results = detect(stage, [BOX, BOX], [2, 2], [0.95, 0.7])
    assert len(results) == 1
    assert results[0].confidence == pytest.approx(0.95)


def test_different_categories_not_merged(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    results = detect(stage, [BOX, BOX], [0, 2], [0.8, 0.9])
    assert [d.name for d in results] == ["person", "dog"]


def test_disjoint_boxes_same_category(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    results = detect(stage, [[0.0, 0.0, 0.1, 0.1], [0.5, 0.5, 0.9, 0.9]], [1, 1], [0.8, 0.9])
    assert len(results) == 2
    assert results[0].box.bounded_to(results[1].box).area() == 0


def test_low_confidence_dropped(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    assert detect(stage, [BOX], [1], [0.3]) == []


def test_negative_coordinates_clamped(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    box = detect(stage, [[-0.5, -0.5, 0.2, 0.2]], [0], [0.9])[0].box
    assert box.x == 0 and box.y == 0
    assert box.width >= 0 and box.height >= 0


def test_apply_results(tmp_path):
    stage = make_stage(tmp_path)
    stage.configure()
    detect(stage, [BOX], [1], [0.9])
    request = CompletedRequest()
    stage.apply_results(request)
    assert request.post_process_metadata["object_detect.results"] == stage.output_results
    assert len(request.post_process_metadata["object_detect.results"]) == 1