#!/usr/bin/env python3
"""
Compositor for Image Segmentation
Renders packed class colors as an image and blends it over the source photo
"""
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import RenderError

PIXEL_FORMATS = ('GRAY', 'BGR', 'BGRA')


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """Immutable 8-bit image in OpenCV channel order"""

    data: np.ndarray
    pixel_format: str = 'BGR'
    premultiplied: bool = False

    def __post_init__(self):
        if self.pixel_format not in PIXEL_FORMATS:
            raise ValueError(f"Unknown pixel format: {self.pixel_format}")
        data = np.array(self.data, dtype=np.uint8, copy=True)
        expected_ndim = 2 if self.pixel_format == 'GRAY' else 3
        if data.ndim != expected_ndim or (expected_ndim == 3 and data.shape[2] != len(self.pixel_format)):
            raise ValueError(f"Array of shape {data.shape} does not match pixel format {self.pixel_format}")
        data.setflags(write=False)
        object.__setattr__(self, 'data', data)

    @classmethod
    def from_array(cls, array: np.ndarray, pixel_format: Optional[str] = None) -> 'ImageBuffer':
        """Wrap an OpenCV image, guessing the pixel format from its channel count"""
        if array.dtype != np.uint8:
            raise ValueError(f"Expected an 8-bit image, got {array.dtype}")
        if pixel_format is None:
            if array.ndim == 2:
                pixel_format = 'GRAY'
            elif array.ndim == 3 and array.shape[2] == 3:
                pixel_format = 'BGR'
            elif array.ndim == 3 and array.shape[2] == 4:
                pixel_format = 'BGRA'
            else:
                raise ValueError(f"Unsupported image shape: {array.shape}")
        return cls(array, pixel_format)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def to_array(self) -> np.ndarray:
        """Writable copy of the pixels"""
        return self.data.copy()

    def to_straight_alpha(self) -> np.ndarray:
        """BGRA copy with color channels no longer multiplied by alpha"""
        if self.pixel_format != 'BGRA':
            return cv2.cvtColor(self.to_bgr(), cv2.COLOR_BGR2BGRA)
        if not self.premultiplied:
            return self.to_array()

        pixels = self.data.astype(np.float32)
        alpha = pixels[..., 3:4]
        safe_alpha = np.where(alpha > 0, alpha, 255.0)
        pixels[..., :3] = np.where(alpha > 0, pixels[..., :3] * 255.0 / safe_alpha, 0.0)
        return np.clip(np.rint(pixels), 0, 255).astype(np.uint8)

    def to_bgr(self) -> np.ndarray:
        """Three-channel BGR copy of the image"""
        if self.pixel_format == 'GRAY':
            return cv2.cvtColor(self.data, cv2.COLOR_GRAY2BGR)
        if self.pixel_format == 'BGRA':
            return np.ascontiguousarray(self.to_straight_alpha()[..., :3])
        return self.to_array()


class Compositor:
    """Builds visualization and overlay images for a segmentation result"""

    def __init__(self, overlay_alpha: float = 0.5):
        self.overlay_alpha = overlay_alpha

    @staticmethod
    def image_from_srgb_color_array(pixels, width: int, height: int) -> ImageBuffer:
        """Construct an image from row-major premultiplied ARGB pixel words"""
        if width <= 0 or height <= 0:
            raise RenderError(f"Invalid image size: {width}x{height}")

        try:
            words = np.asarray(pixels, dtype=np.uint32).ravel()
        except (TypeError, ValueError, OverflowError) as e:
            raise RenderError(f"Invalid pixel buffer: {e}") from e
        if words.size != width * height:
            raise RenderError(f"Pixel buffer has {words.size} entries, expected {width * height}")

        # A little-endian ARGB word is laid out in memory as B, G, R, A
        data = words.astype('<u4').view(np.uint8).reshape(height, width, 4)
        return ImageBuffer(data, 'BGRA', premultiplied=True)

    def overlay_with_image(self, image: Optional[ImageBuffer], overlay: Optional[ImageBuffer],
                           alpha: Optional[float] = None) -> ImageBuffer:
        """Alpha-blend the overlay, resized to the image, on top of the image"""
        if image is None or overlay is None:
            raise RenderError("Both the source image and the overlay are required")
        alpha = self.overlay_alpha if alpha is None else alpha

        base = image.to_bgr().astype(np.float32)
        if base.size == 0:
            raise RenderError("Source image is empty")
        height, width = base.shape[:2]

        if overlay.pixel_format == 'BGRA':
            layer = overlay.to_array()
            premultiplied = overlay.premultiplied
        else:
            layer = cv2.cvtColor(overlay.to_bgr(), cv2.COLOR_BGR2BGRA)
            premultiplied = True

        if layer.shape[:2] != (height, width):
            try:
                layer = cv2.resize(layer, (width, height), interpolation=cv2.INTER_NEAREST)
            except cv2.error as e:
                raise RenderError(f"Failed to align overlay with image: {e}") from e

        layer = layer.astype(np.float32)
        layer_alpha = layer[..., 3:4] / 255.0
        color = layer[..., :3] if premultiplied else layer[..., :3] * layer_alpha

        blended = base * (1.0 - alpha * layer_alpha) + alpha * color
        return ImageBuffer(np.clip(np.rint(blended), 0, 255).astype(np.uint8), 'BGR')

    def render(self, pixels, width: int, height: int,
               image: ImageBuffer) -> Tuple[ImageBuffer, ImageBuffer]:
        """Build the visualization image and its overlay on the source image"""
        result_image = self.image_from_srgb_color_array(pixels, width, height)
        overlay_image = self.overlay_with_image(image, result_image)
        return result_image, overlay_image
