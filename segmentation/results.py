#!/usr/bin/env python3
"""
Result Types for Image Segmentation
"""
from dataclasses import dataclass, field
from typing import Dict, NamedTuple, Tuple

import numpy as np

from .compositor import ImageBuffer


class LegendColor(NamedTuple):
    """sRGB color with components in [0, 1]"""
    red: float
    green: float
    blue: float
    alpha: float

    @classmethod
    def from_argb(cls, color: int) -> 'LegendColor':
        """Convert a color from its ARGB word representation"""
        a = ((color & 0xFF000000) >> 24) / 255.0
        r = ((color & 0x00FF0000) >> 16) / 255.0
        g = ((color & 0x0000FF00) >> 8) / 255.0
        b = (color & 0x000000FF) / 255.0
        return cls(r, g, b, a)

    def to_hex(self) -> str:
        return '#{:02X}{:02X}{:02X}'.format(*(round(c * 255) for c in (self.red, self.green, self.blue)))

    def to_bgr(self) -> Tuple[int, int, int]:
        return tuple(round(c * 255) for c in (self.blue, self.green, self.red))


@dataclass(frozen=True, eq=False)
class SegmentationResult:
    """Representation of the image segmentation result"""

    # Each value is the class the pixel most likely belongs to
    segmentation_map: np.ndarray
    result_image: ImageBuffer
    overlay_image: ImageBuffer
    preprocessing_time: float
    inference_time: float
    postprocessing_time: float
    visualization_time: float
    # Classes found in the image and the color used to draw each one
    color_legend: Dict[str, LegendColor] = field(default_factory=dict)

    def __post_init__(self):
        segmentation_map = np.array(self.segmentation_map, copy=True)
        segmentation_map.setflags(write=False)
        object.__setattr__(self, 'segmentation_map', segmentation_map)
        object.__setattr__(self, 'color_legend', dict(self.color_legend))

    @property
    def total_time(self) -> float:
        return self.preprocessing_time + self.inference_time + self.postprocessing_time + self.visualization_time

    def timings(self) -> Dict[str, float]:
        return {
            'preprocessing_time': self.preprocessing_time,
            'inference_time': self.inference_time,
            'postprocessing_time': self.postprocessing_time,
            'visualization_time': self.visualization_time,
        }
