#!/usr/bin/env python3
"""
Post-processing Utilities for Image Segmentation
Turns raw model predictions into a class map, packed pixels and a color legend
"""
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from .config import LEGEND_COLOR_LIST, PERSON_CLASS_INDEX
from .results import LegendColor

BACKGROUND_CLASS = 0
FOREGROUND_CLASS = 1


class PostProcessor:
    """Post-processing for binary foreground/background segmentation output"""

    def __init__(self, foreground_class: int = PERSON_CLASS_INDEX,
                 palette: Optional[Sequence[int]] = None,
                 scan_class_set: bool = False):
        self.foreground_class = foreground_class
        self.palette = np.asarray(LEGEND_COLOR_LIST if palette is None else palette, dtype=np.uint32)
        if self.palette.size == 0:
            raise ValueError("Palette must contain at least one color")
        self.scan_class_set = scan_class_set

    def parse_segmentation_output(self, prediction: np.ndarray) -> np.ndarray:
        """Mark pixels whose truncated prediction equals the foreground class"""
        prediction = np.asarray(prediction)
        if prediction.dtype.kind != 'f':
            prediction = prediction.astype(np.float64)
        finite = np.isfinite(prediction)
        truncated = np.trunc(np.where(finite, prediction, 0.0))
        return finite & (truncated == self.foreground_class)

    def parse_binary_class_output(self, prediction: np.ndarray) -> Tuple[np.ndarray, np.ndarray, Set[int]]:
        """Build the segmentation map, visualization pixels and class list"""
        prediction = np.asarray(prediction)
        if prediction.ndim != 2:
            # Accept outputs that carry extra singleton axes, e.g. [1, D, D]
            prediction = np.squeeze(prediction)
        if prediction.ndim != 2:
            raise ValueError(f"Expected a 2D prediction, got shape {prediction.shape}")

        is_foreground = self.parse_segmentation_output(prediction)
        segmentation_map = np.where(is_foreground, FOREGROUND_CLASS, BACKGROUND_CLASS).astype(np.int64)

        # Row-major lookup of each pixel's legend color
        segmentation_image_pixels = self.palette[segmentation_map.ravel() % self.palette.size]

        if self.scan_class_set:
            class_list = {int(c) for c in np.unique(segmentation_map)}
        else:
            class_list = {BACKGROUND_CLASS, FOREGROUND_CLASS}

        return segmentation_map, segmentation_image_pixels, class_list

    def class_names(self, labels: Sequence[str]) -> List[str]:
        """Names of the two classes this processor reports"""
        foreground = labels[self.foreground_class] if self.foreground_class < len(labels) else 'foreground'
        return [labels[BACKGROUND_CLASS], foreground]

    def class_list_to_color_legend(self, class_list: Set[int],
                                   class_names: Sequence[str]) -> Dict[str, LegendColor]:
        """Look up the colors used to visualize the classes found in the image"""
        color_legend = {}
        for class_index in sorted(class_list):
            # Reuse colors cyclically when there are more classes than colors
            color = int(self.palette[class_index % self.palette.size])
            color_legend[class_names[class_index]] = LegendColor.from_argb(color)
        return color_legend

    def calculate_area_metrics(self, segmentation_map: np.ndarray) -> Dict:
        """Calculate foreground coverage of a segmentation map"""
        total_pixels = int(segmentation_map.size)
        foreground_pixels = int(np.count_nonzero(segmentation_map == FOREGROUND_CLASS))
        foreground_percentage = (foreground_pixels / total_pixels) * 100 if total_pixels else 0.0

        return {
            'total_pixels': total_pixels,
            'foreground_pixels': foreground_pixels,
            'foreground_percentage': foreground_percentage,
        }
