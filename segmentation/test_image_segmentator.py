#!/usr/bin/env python3
"""
Tests for the image segmentator pipeline
Initialization, request sequencing, error reporting and result saving
"""
import json
import sys
import threading
import time

import cv2
import numpy as np
import pytest

from segmentation.compositor import ImageBuffer
from segmentation.config import SegmentationConfig, VIVID_BLUE, VIVID_RED
from segmentation.errors import (
    InitializationInternalError,
    InvalidImageError,
    InvalidLabelListError,
    InvalidModelError,
    PipelineNotReadyError,
    RenderError,
    ResultVisualizationError,
    SegmentationInternalError,
)
from segmentation.image_segmentator import ImageSegmentator, PipelineState, find_images
from segmentation.inference_engine import InferenceAdapter
from segmentation.visualization import save_results

REFERENCE_PREDICTION = np.array([[15, 15, 0], [0, 15, 0], [0, 0, 15]], dtype=np.float32)


class StubAdapter(InferenceAdapter):
    """Returns a fixed prediction and records every call"""

    def __init__(self, prediction=REFERENCE_PREDICTION, delay=0.0):
        self.prediction = prediction
        self.delay = delay
        self.events = []
        self.inputs = []
        self._active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    @property
    def input_shape(self):
        dim = self.prediction.shape[0]
        return (1, dim, dim, 3)

    def infer(self, tensor):
        self.check_input(tensor)
        with self._lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
            self.events.append(('enter', threading.current_thread().name))
        time.sleep(self.delay)
        with self._lock:
            self.events.append(('exit', threading.current_thread().name))
            self._active -= 1
        self.inputs.append(tensor.copy())
        return self.prediction.copy()


class FailingAdapter(StubAdapter):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def infer(self, tensor):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("model crashed")
        return super().infer(tensor)


def make_segmentator(adapter=None, **config):
    adapter = adapter or StubAdapter()
    segmentator = ImageSegmentator(SegmentationConfig(**config), adapter_factory=lambda _: adapter)
    segmentator.initialize().result(timeout=10)
    return segmentator


def make_image(width=6, height=4, value=100):
    return np.full((height, width, 3), value, dtype=np.uint8)


def test_initialize_reaches_ready_state():
    segmentator = ImageSegmentator(SegmentationConfig(), adapter_factory=lambda _: StubAdapter())
    assert segmentator.state == PipelineState.UNINITIALIZED

    returned = segmentator.initialize().result(timeout=10)

    assert returned is segmentator
    assert segmentator.state == PipelineState.READY
    assert segmentator.input_dim == 3
    assert segmentator.labels[15] == 'person'
    segmentator.shutdown()


def test_initialize_twice_is_rejected():
    segmentator = make_segmentator()
    with pytest.raises(RuntimeError):
        segmentator.initialize()
    segmentator.shutdown()


def test_missing_label_list_fails_initialization(tmp_path):
    future = ImageSegmentator.new_instance(
        SegmentationConfig(labels_path=str(tmp_path / "missing.json")),
        adapter_factory=lambda _: StubAdapter(),
    )
    with pytest.raises(InvalidLabelListError):
        future.result(timeout=10)


def test_model_construction_error_is_wrapped():
    def broken_factory(config):
        raise RuntimeError("no weights")

    segmentator = ImageSegmentator(SegmentationConfig(), adapter_factory=broken_factory)
    with pytest.raises(InitializationInternalError) as excinfo:
        segmentator.initialize().result(timeout=10)

    assert isinstance(excinfo.value.cause, RuntimeError)
    assert segmentator.state == PipelineState.FAILED
    with pytest.raises(PipelineNotReadyError):
        segmentator.run_segmentation(make_image()).result(timeout=10)
    segmentator.shutdown()


def test_invalid_model_error_is_reported_unchanged():
    def factory(config):
        raise InvalidModelError(config.model_name, "unknown model preset")

    with pytest.raises(InvalidModelError):
        ImageSegmentator.new_instance(SegmentationConfig(), adapter_factory=factory).result(timeout=10)


def test_initialization_completion_receives_segmentator():
    done = threading.Event()
    received = {}

    def completion(value, error):
        received.update(value=value, error=error, thread=threading.current_thread().name)
        done.set()

    future = ImageSegmentator.new_instance(SegmentationConfig(), completion=completion,
                                           adapter_factory=lambda _: StubAdapter())
    segmentator = future.result(timeout=10)

    assert done.wait(10)
    assert received['value'] is segmentator
    assert received['error'] is None
    assert received['thread'].startswith('segmentation_callbacks')
    segmentator.shutdown()


def test_run_segmentation_end_to_end():
    adapter = StubAdapter()
    segmentator = make_segmentator(adapter)

    result = segmentator.run_segmentation(make_image()).result(timeout=10)

    assert result.segmentation_map.tolist() == [[1, 1, 0], [0, 1, 0], [0, 0, 1]]
    assert result.result_image.size == (3, 3)
    assert result.overlay_image.size == (6, 4)
    assert list(result.color_legend) == ['background', 'person']
    for timing in result.timings().values():
        assert timing >= 0.0

    # Model input is a [1, D, D, 3] float tensor with raw pixel values
    model_input = adapter.inputs[0]
    assert model_input.shape == (1, 3, 3, 3)
    assert model_input.dtype == np.float32
    assert np.all(model_input == 100.0)
    segmentator.shutdown()


def test_visualization_pixels_follow_palette():
    segmentator = make_segmentator()
    result = segmentator.run_segmentation(make_image()).result(timeout=10)

    words = result.result_image.data.astype(np.uint32)
    packed = (words[..., 3] << 24) | (words[..., 2] << 16) | (words[..., 1] << 8) | words[..., 0]
    c0, c1 = VIVID_BLUE, VIVID_RED
    assert packed.ravel().tolist() == [c1, c1, c0, c0, c1, c0, c0, c0, c1]
    segmentator.shutdown()


def test_results_are_deterministic():
    segmentator = make_segmentator()
    image = make_image(value=42)

    first = segmentator.run_segmentation(image).result(timeout=10)
    second = segmentator.run_segmentation(image).result(timeout=10)

    assert np.array_equal(first.segmentation_map, second.segmentation_map)
    assert np.array_equal(first.result_image.data, second.result_image.data)
    assert np.array_equal(first.overlay_image.data, second.overlay_image.data)
    segmentator.shutdown()


def test_concurrent_requests_never_overlap_inference():
    adapter = StubAdapter(delay=0.05)
    segmentator = make_segmentator(adapter)
    futures = []

    def submit():
        futures.append(segmentator.run_segmentation(make_image()))

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    for future in futures:
        future.result(timeout=10)

    assert adapter.max_active == 1
    assert [event for event, _ in adapter.events] == ['enter', 'exit', 'enter', 'exit']
    segmentator.shutdown()


def test_result_is_immutable():
    segmentator = make_segmentator()
    result = segmentator.run_segmentation(make_image()).result(timeout=10)

    with pytest.raises(ValueError):
        result.segmentation_map[0, 0] = 5
    with pytest.raises(AttributeError):
        result.inference_time = 0.0
    segmentator.shutdown()


@pytest.mark.parametrize("image", [
    None,
    np.zeros((0, 0, 3), dtype=np.uint8),
    np.zeros((4, 4, 3), dtype=np.float32),
    np.zeros((4, 4, 2), dtype=np.uint8),
    "not an image",
])
def test_invalid_images_are_rejected(image):
    segmentator = make_segmentator()
    with pytest.raises(InvalidImageError):
        segmentator.run_segmentation(image).result(timeout=10)
    assert segmentator.state == PipelineState.READY
    segmentator.shutdown()


def test_inference_failure_keeps_pipeline_ready():
    segmentator = make_segmentator(FailingAdapter())

    with pytest.raises(SegmentationInternalError) as excinfo:
        segmentator.run_segmentation(make_image()).result(timeout=10)
    assert isinstance(excinfo.value.cause, RuntimeError)

    assert segmentator.state == PipelineState.READY
    result = segmentator.run_segmentation(make_image()).result(timeout=10)
    assert result.segmentation_map.shape == (3, 3)
    segmentator.shutdown()


def test_render_failure_is_reported(monkeypatch):
    segmentator = make_segmentator()

    def broken_render(*args, **kwargs):
        raise RenderError("cannot render")

    monkeypatch.setattr(segmentator.compositor, 'render', broken_render)
    with pytest.raises(ResultVisualizationError):
        segmentator.run_segmentation(make_image()).result(timeout=10)
    segmentator.shutdown()


def test_segmentation_completion_receives_error():
    segmentator = make_segmentator()
    done = threading.Event()
    received = {}

    def completion(value, error):
        received.update(value=value, error=error)
        done.set()

    future = segmentator.run_segmentation(None, completion=completion)
    with pytest.raises(InvalidImageError):
        future.result(timeout=10)

    assert done.wait(10)
    assert received['value'] is None
    assert isinstance(received['error'], InvalidImageError)
    segmentator.shutdown()


def test_failing_completion_does_not_break_pipeline():
    segmentator = make_segmentator()

    def completion(value, error):
        raise RuntimeError("handler bug")

    segmentator.run_segmentation(make_image(), completion=completion).result(timeout=10)
    result = segmentator.run_segmentation(make_image()).result(timeout=10)
    assert result.segmentation_map.shape == (3, 3)
    segmentator.shutdown()


def test_shutdown_without_waiting_lets_queued_requests_finish():
    segmentator = make_segmentator(StubAdapter(delay=0.05))
    delivered = []
    callbacks_done = threading.Event()

    def completion(value, error):
        delivered.append((value, error))
        if len(delivered) == 2:
            callbacks_done.set()

    futures = [segmentator.run_segmentation(make_image(), completion=completion) for _ in range(2)]
    segmentator.shutdown(wait=False)

    for future in futures:
        assert future.result(timeout=10).segmentation_map.shape == (3, 3)
    assert callbacks_done.wait(10)
    assert all(value is not None and error is None for value, error in delivered)

    with pytest.raises(RuntimeError):
        segmentator.run_segmentation(make_image())
    segmentator.shutdown()


def test_accepts_image_buffer_and_bgra_input():
    segmentator = make_segmentator()
    bgra = np.full((5, 5, 4), 255, dtype=np.uint8)

    from_buffer = segmentator.run_segmentation(ImageBuffer.from_array(make_image())).result(timeout=10)
    from_bgra = segmentator.run_segmentation(bgra).result(timeout=10)

    assert from_buffer.overlay_image.size == (6, 4)
    assert from_bgra.overlay_image.size == (5, 5)
    segmentator.shutdown()


def test_segment_file(tmp_path):
    image_path = tmp_path / "photo.png"
    cv2.imwrite(str(image_path), make_image(8, 8))

    with make_segmentator() as segmentator:
        result = segmentator.segment_file(image_path).result(timeout=10)
        assert result.overlay_image.size == (8, 8)

        with pytest.raises(InvalidImageError):
            segmentator.segment_file(tmp_path / "missing.png").result(timeout=10)


def test_save_results_writes_outputs(tmp_path):
    image = ImageBuffer.from_array(make_image())
    with make_segmentator() as segmentator:
        result = segmentator.run_segmentation(image).result(timeout=10)
        metrics = segmentator.post_processor.calculate_area_metrics(result.segmentation_map)

    saved_paths = save_results(result, str(tmp_path), "photo", image=image, metrics=metrics)

    for path in saved_paths.values():
        assert (tmp_path / path.split('/')[-1]).exists()
    assert np.array_equal(np.load(saved_paths['map_path']), result.segmentation_map)
    with open(saved_paths['metadata_path']) as f:
        metadata = json.load(f)
    assert metadata['color_legend'] == {'background': '#00A1C2', 'person': '#C10020'}
    assert metadata['metrics']['foreground_pixels'] == 4
    segmentation = cv2.imread(saved_paths['segmentation_path'], cv2.IMREAD_UNCHANGED)
    assert segmentation.shape == (3, 3, 4)


def test_find_images(tmp_path):
    cv2.imwrite(str(tmp_path / "b.png"), make_image())
    cv2.imwrite(str(tmp_path / "a.jpg"), make_image())
    (tmp_path / "notes.txt").write_text("skip me")

    assert [p.name for p in find_images(str(tmp_path))] == ["a.jpg", "b.png"]


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
