#!/usr/bin/env python3
"""
Image Segmentator
Runs preprocessing, inference, post-processing and visualization for one image at a time

All model work is serialized on a dedicated single-worker queue. Results are
returned as futures, and optional completion handlers run on a separate
callback queue so callers are never blocked by model work.
"""
import argparse
import logging
import os
import sys
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import cv2
import numpy as np
from tqdm import tqdm

from .compositor import Compositor, ImageBuffer
from .config import SegmentationConfig, load_config
from .errors import (
    InitializationError,
    InitializationInternalError,
    InvalidImageError,
    PipelineNotReadyError,
    RenderError,
    ResultVisualizationError,
    SegmentationError,
    SegmentationInternalError,
)
from .inference_engine import InferenceAdapter, create_adapter
from .labels import load_label_list
from .post_processing import PostProcessor
from .results import SegmentationResult
from .visualization import save_results

logger = logging.getLogger(__name__)

# Callback receiving either a value or the error that prevented it
Completion = Callable[[Optional[Any], Optional[BaseException]], None]
AdapterFactory = Callable[[SegmentationConfig], InferenceAdapter]

IMAGE_EXTENSIONS = ('*.jpg', '*.jpeg', '*.png', '*.bmp', '*.JPG', '*.JPEG', '*.PNG')


class PipelineState(Enum):
    UNINITIALIZED = 'uninitialized'
    LOADING = 'loading'
    READY = 'ready'
    RUNNING = 'running'
    FAILED = 'failed'


class ImageSegmentator:
    """Segmentation pipeline around a single serialized model"""

    def __init__(self, config: Optional[SegmentationConfig] = None,
                 adapter_factory: AdapterFactory = create_adapter):
        self.config = config or SegmentationConfig()
        self._adapter_factory = adapter_factory

        # Dedicated queue so all model operations run serially
        self._queue = ThreadPoolExecutor(max_workers=1, thread_name_prefix='image_segmentation')
        self._callback_queue = ThreadPoolExecutor(max_workers=1, thread_name_prefix='segmentation_callbacks')

        self._state = PipelineState.UNINITIALIZED
        self._state_lock = threading.Lock()
        self._closed = False

        self.adapter: Optional[InferenceAdapter] = None
        self.labels: List[str] = []
        self.input_dim: Optional[int] = None

        self.post_processor = PostProcessor(
            foreground_class=self.config.foreground_class,
            palette=self.config.palette,
            scan_class_set=self.config.scan_class_set,
        )
        self.compositor = Compositor(self.config.overlay_alpha)
        self._class_names: List[str] = []

    # Initialization

    @classmethod
    def new_instance(cls, config: Optional[SegmentationConfig] = None,
                     completion: Optional[Completion] = None,
                     adapter_factory: AdapterFactory = create_adapter) -> Future:
        """Create a segmentator and load it in the background"""
        return cls(config, adapter_factory).initialize(completion)

    def initialize(self, completion: Optional[Completion] = None) -> Future:
        """Load the label list and the model; the future resolves to this segmentator"""
        with self._state_lock:
            if self._state != PipelineState.UNINITIALIZED:
                raise RuntimeError(f"Image segmentator already initialized (state: {self._state.value})")
            self._state = PipelineState.LOADING

        return self._submit(self._load, completion)

    def _load(self) -> 'ImageSegmentator':
        try:
            labels = load_label_list(self.config.labels_path)
            try:
                adapter = self._adapter_factory(self.config)
            except InitializationError:
                raise
            except Exception as e:
                logger.error(f"Failed to create the segmentation model with error: {e}")
                raise InitializationInternalError(e) from e
        except InitializationError:
            self._set_state(PipelineState.FAILED)
            raise

        self.labels = labels
        self.adapter = adapter
        self.input_dim = adapter.input_dim
        self._class_names = self.post_processor.class_names(labels)
        self._set_state(PipelineState.READY)

        logger.info(f"Image segmentator ready: {len(labels)} labels, input {self.input_dim}x{self.input_dim}")
        return self

    # Image segmentation

    def run_segmentation(self, image: Union[np.ndarray, ImageBuffer],
                         completion: Optional[Completion] = None) -> Future:
        """Run segmentation on a BGR image; the future resolves to a SegmentationResult"""
        return self._submit(lambda: self._segment(image), completion)

    def segment_file(self, image_path: Union[str, Path],
                     completion: Optional[Completion] = None) -> Future:
        """Read an image file and run segmentation on it"""
        return self._submit(lambda: self._segment(self._read_image(image_path)), completion)

    def _segment(self, image) -> SegmentationResult:
        with self._state_lock:
            if self._state != PipelineState.READY:
                raise PipelineNotReadyError(self._state.value)
            self._state = PipelineState.RUNNING

        try:
            return self._run(image)
        finally:
            self._set_state(PipelineState.READY)

    def _run(self, image) -> SegmentationResult:
        start_time = time.time()

        # Preprocessing: resize the input image to the model input shape
        source = self._as_image_buffer(image)
        model_input = self.preprocess_image(source)

        now = time.time()
        preprocessing_time = now - start_time
        start_time = now

        try:
            prediction = self.adapter.infer(model_input)
        except Exception as e:
            logger.error(f"Failed to invoke the segmentation model with error: {e}")
            raise SegmentationInternalError(e) from e

        now = time.time()
        inference_time = now - start_time
        start_time = now

        try:
            segmentation_map, pixels, class_list = self.post_processor.parse_binary_class_output(prediction)
        except ValueError as e:
            logger.error(f"Unexpected model output: {e}")
            raise SegmentationInternalError(e) from e

        now = time.time()
        postprocessing_time = now - start_time
        start_time = now

        height, width = segmentation_map.shape
        try:
            result_image, overlay_image = self.compositor.render(pixels, width, height, source)
        except RenderError as e:
            logger.error(f"Failed to visualize segmentation result: {e}")
            raise ResultVisualizationError(e) from e

        color_legend = self.post_processor.class_list_to_color_legend(class_list, self._class_names)

        visualization_time = time.time() - start_time

        logger.debug(
            f"Segmentation timings - preprocessing: {preprocessing_time * 1000:.1f}ms, "
            f"inference: {inference_time * 1000:.1f}ms, postprocessing: {postprocessing_time * 1000:.1f}ms, "
            f"visualization: {visualization_time * 1000:.1f}ms"
        )

        return SegmentationResult(
            segmentation_map=segmentation_map,
            result_image=result_image,
            overlay_image=overlay_image,
            preprocessing_time=preprocessing_time,
            inference_time=inference_time,
            postprocessing_time=postprocessing_time,
            visualization_time=visualization_time,
            color_legend=color_legend,
        )

    def preprocess_image(self, image: ImageBuffer) -> np.ndarray:
        """Resize to the model input and convert to a [1, D, D, 3] float RGB tensor"""
        if image.width == 0 or image.height == 0:
            raise InvalidImageError("image is empty")

        rgb = cv2.cvtColor(image.to_bgr(), cv2.COLOR_BGR2RGB)
        try:
            resized = cv2.resize(rgb, (self.input_dim, self.input_dim), interpolation=cv2.INTER_LINEAR)
        except cv2.error as e:
            logger.error(f"Failed to convert the image buffer to RGB data: {e}")
            raise InvalidImageError(str(e)) from e

        return resized.astype(np.float32)[np.newaxis]

    @staticmethod
    def _as_image_buffer(image) -> ImageBuffer:
        if image is None:
            raise InvalidImageError("no image given")
        if isinstance(image, ImageBuffer):
            return image
        if not isinstance(image, np.ndarray):
            raise InvalidImageError(f"unsupported image type {type(image).__name__}")
        try:
            return ImageBuffer.from_array(image)
        except ValueError as e:
            raise InvalidImageError(str(e)) from e

    @staticmethod
    def _read_image(image_path: Union[str, Path]) -> np.ndarray:
        image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
        if image is None:
            raise InvalidImageError(f"could not load image {image_path}")
        return image

    # Dispatching

    def _submit(self, work: Callable[[], Any], completion: Optional[Completion]) -> Future:
        def task():
            try:
                value = work()
            except Exception as e:
                self._deliver(completion, None, e)
                raise
            self._deliver(completion, value, None)
            return value

        return self._queue.submit(task)

    def _deliver(self, completion: Optional[Completion], value, error):
        if completion is not None:
            self._callback_queue.submit(self._run_completion, completion, value, error)

    @staticmethod
    def _run_completion(completion: Completion, value, error):
        try:
            completion(value, error)
        except Exception:
            logger.exception("Segmentation completion handler raised an exception")

    def _set_state(self, state: PipelineState):
        with self._state_lock:
            self._state = state

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    def get_model_info(self) -> Dict:
        """Get information about the loaded model"""
        if self.adapter is None:
            return {'error': 'Model not loaded'}
        info = self.adapter.get_model_info()
        info['num_labels'] = len(self.labels)
        return info

    def shutdown(self, wait: bool = True):
        """Stop accepting requests; requests already submitted still run to completion"""
        with self._state_lock:
            if self._closed:
                return
            self._closed = True

        # Close the callback queue only after every queued request has delivered its result
        self._queue.submit(self._callback_queue.shutdown, wait=False)
        self._queue.shutdown(wait=wait)
        if wait:
            self._callback_queue.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()


def setup_logging(level: str = 'INFO', log_dir: Optional[str] = None):
    """Setup logging configuration"""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        handlers.append(logging.FileHandler(os.path.join(log_dir, f"segmentation_{timestamp}.log")))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


def find_images(input_dir: str) -> List[Path]:
    """List image files in a directory"""
    input_path = Path(input_dir)
    image_files = set()
    for ext in IMAGE_EXTENSIONS:
        image_files.update(input_path.glob(ext))
    return sorted(image_files)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function for command-line usage"""
    parser = argparse.ArgumentParser(description="DeepLab Image Segmentation")
    parser.add_argument("--config", help="Pipeline configuration JSON file")
    parser.add_argument("--model-name", help="Model preset name")
    parser.add_argument("--model-path", help="Path to local model weights")
    parser.add_argument("--labels", dest="labels_path", help="Label list JSON file")
    parser.add_argument("--input-image", help="Path to input image")
    parser.add_argument("--input-dir", help="Directory containing input images")
    parser.add_argument("--output-dir", default="segmentation_results", help="Output directory")
    parser.add_argument("--input-dim", type=int, help="Model input size")
    parser.add_argument("--device", help="Device to use (auto/cpu/cuda/mps)")
    parser.add_argument("--alpha", dest="overlay_alpha", type=float, help="Overlay blend weight")
    parser.add_argument("--scan-classes", action='store_true', help="Report only classes present in the map")
    parser.add_argument("--no-comparison", action='store_true', help="Skip comparison figures")
    parser.add_argument("--log-dir", help="Directory for log files")
    parser.add_argument("--log-level", help="Logging level")

    args = parser.parse_args(argv)

    try:
        config = load_config(
            args.config,
            model_name=args.model_name,
            model_path=args.model_path,
            labels_path=args.labels_path,
            input_dim=args.input_dim,
            device=args.device,
            overlay_alpha=args.overlay_alpha,
            scan_class_set=True if args.scan_classes else None,
            log_level=args.log_level,
        )
    except (OSError, ValueError) as e:
        print(f"Error: invalid configuration: {e}")
        return 1

    setup_logging(config.log_level, args.log_dir)

    if args.input_image:
        image_files = [Path(args.input_image)]
    elif args.input_dir:
        image_files = find_images(args.input_dir)
        if not image_files:
            logger.error(f"No image files found in {args.input_dir}")
            return 1
    else:
        print("Please provide either --input-image or --input-dir")
        return 1

    try:
        segmentator = ImageSegmentator.new_instance(config).result()
    except InitializationError as e:
        logger.error(f"Failed to initialize image segmentator: {e}")
        return 1

    model_info = segmentator.get_model_info()
    print(f"Model: {model_info.get('model_name', model_info['model_type'])}")
    print(f"Input shape: {model_info['input_shape']}")

    failures = 0
    with segmentator:
        for image_file in tqdm(image_files, desc="Segmenting", disable=len(image_files) < 2):
            image_array = cv2.imread(str(image_file), cv2.IMREAD_COLOR)
            if image_array is None:
                logger.error(f"Could not load image {image_file}")
                failures += 1
                continue
            image = ImageBuffer.from_array(image_array)

            try:
                result = segmentator.run_segmentation(image).result()
            except SegmentationError as e:
                logger.error(f"Error processing {image_file}: {e}")
                failures += 1
                continue

            metrics = segmentator.post_processor.calculate_area_metrics(result.segmentation_map)
            save_results(
                result,
                args.output_dir,
                image_file.stem,
                image=None if args.no_comparison else image,
                metrics=metrics,
            )
            logger.info(
                f"{image_file.name}: {metrics['foreground_percentage']:.2f}% foreground, "
                f"total {result.total_time * 1000:.1f}ms"
            )

    if failures:
        print(f"Segmentation finished with {failures} failed image(s)")
        return 1

    print("Segmentation completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
