"""
Image Segmentation Package
DeepLab segmentation pipeline components
"""

from .compositor import Compositor, ImageBuffer
from .config import SegmentationConfig, get_model_configs, load_config
from .errors import (
    ImageSegmentationError,
    InitializationError,
    InitializationInternalError,
    InvalidImageError,
    InvalidLabelListError,
    InvalidModelError,
    PipelineNotReadyError,
    RenderError,
    ResultVisualizationError,
    SegmentationError,
    SegmentationInternalError,
)
from .image_segmentator import ImageSegmentator, PipelineState
from .inference_engine import DeepLabV3Adapter, InferenceAdapter, create_adapter
from .labels import load_label_list
from .post_processing import PostProcessor
from .results import LegendColor, SegmentationResult

__all__ = [
    'Compositor',
    'DeepLabV3Adapter',
    'ImageBuffer',
    'ImageSegmentationError',
    'ImageSegmentator',
    'InferenceAdapter',
    'InitializationError',
    'InitializationInternalError',
    'InvalidImageError',
    'InvalidLabelListError',
    'InvalidModelError',
    'LegendColor',
    'PipelineNotReadyError',
    'PipelineState',
    'PostProcessor',
    'RenderError',
    'ResultVisualizationError',
    'SegmentationConfig',
    'SegmentationError',
    'SegmentationInternalError',
    'SegmentationResult',
    'create_adapter',
    'get_model_configs',
    'load_config',
    'load_label_list',
]
