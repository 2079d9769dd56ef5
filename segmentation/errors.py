#!/usr/bin/env python3
"""
Error Types for Image Segmentation
Initialization, segmentation and rendering failures
"""
from typing import Optional


class ImageSegmentationError(Exception):
    """Base class for all segmentation pipeline errors"""


class RenderError(ImageSegmentationError):
    """Raised when an image cannot be built from a pixel buffer"""


# Initialization errors

class InitializationError(ImageSegmentationError):
    """Errors that can happen while creating an image segmentator"""


class InvalidModelError(InitializationError):
    """The segmentation model is unknown or its weights are missing"""

    def __init__(self, model_name: str, reason: str = ""):
        self.model_name = model_name
        message = f"Invalid model: {model_name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidLabelListError(InitializationError):
    """The label list file is missing or malformed"""

    def __init__(self, file_name: str, reason: str = ""):
        self.file_name = file_name
        message = f"Invalid label list: {file_name}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InitializationInternalError(InitializationError):
    """Unexpected failure while constructing the model"""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Internal error during initialization: {cause}")


# Segmentation errors

class SegmentationError(ImageSegmentationError):
    """Errors that can happen while running segmentation on an image"""


class InvalidImageError(SegmentationError):
    """The input image could not be converted into a model tensor"""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(f"Invalid input image: {reason}" if reason else "Invalid input image")


class SegmentationInternalError(SegmentationError):
    """The model failed while running inference"""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"Internal error during inference: {cause}")


class ResultVisualizationError(SegmentationError):
    """The segmentation result could not be rendered"""

    def __init__(self, cause: Optional[Exception] = None):
        self.cause = cause
        message = "Failed to visualize segmentation result"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class PipelineNotReadyError(SegmentationError):
    """A request reached the pipeline while it was not ready"""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Image segmentator is not ready (state: {state})")
