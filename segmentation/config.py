#!/usr/bin/env python3
"""
Configuration for Image Segmentation
Pipeline settings and predefined model configurations
"""
import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

# Colors used to visualize segmentation result, as ARGB words
VIVID_BLUE = 0xFF00A1C2
VIVID_RED = 0xFFC10020
LEGEND_COLOR_LIST = [VIVID_BLUE, VIVID_RED]

# DeepLab on PASCAL VOC reports "person" as class 15
PERSON_CLASS_INDEX = 15


class SegmentationConfig(BaseModel):
    """Settings for the image segmentation pipeline"""

    model_name: str = Field(default="deeplabv3_mobilenet_v3_large", description="Model preset name")
    model_path: Optional[str] = Field(default=None, description="Optional local weights file")
    pretrained: bool = Field(default=True, description="Load pretrained weights for the preset")
    device: str = Field(default="auto", description="Device to use (auto/cpu/cuda/mps)")
    input_dim: int = Field(default=513, gt=0, description="Model input width and height")
    labels_path: Optional[str] = Field(default=None, description="Label list JSON file")
    foreground_class: int = Field(default=PERSON_CLASS_INDEX, ge=0, description="Foreground class value")
    overlay_alpha: float = Field(default=0.5, ge=0.0, le=1.0, description="Overlay blend weight")
    palette: List[int] = Field(default_factory=lambda: list(LEGEND_COLOR_LIST), min_length=1,
                               description="Legend colors as ARGB words")
    scan_class_set: bool = Field(default=False, description="Report only classes found in the map")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator('palette')
    @classmethod
    def _check_palette(cls, palette: List[int]) -> List[int]:
        for color in palette:
            if not 0 <= color <= 0xFFFFFFFF:
                raise ValueError(f"Palette color out of range: {color:#x}")
        return palette

    @field_validator('log_level')
    @classmethod
    def _check_log_level(cls, level: str) -> str:
        level = level.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError(f"Unknown log level: {level}")
        return level


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> SegmentationConfig:
    """Load configuration from a JSON file, applying keyword overrides"""
    data: Dict = {}
    if path is not None:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)

    data.update({key: value for key, value in overrides.items() if value is not None})
    return SegmentationConfig.model_validate(data)


def get_model_configs() -> Dict:
    """Get predefined model configurations"""
    configs = {
        'deeplabv3_mobilenet_v3_large': {
            'builder': 'deeplabv3_mobilenet_v3_large',
            'weights': 'DeepLabV3_MobileNet_V3_Large_Weights',
            'n_classes': 21,
        },
        'deeplabv3_resnet50': {
            'builder': 'deeplabv3_resnet50',
            'weights': 'DeepLabV3_ResNet50_Weights',
            'n_classes': 21,
        },
        'deeplabv3_resnet101': {
            'builder': 'deeplabv3_resnet101',
            'weights': 'DeepLabV3_ResNet101_Weights',
            'n_classes': 21,
        },
    }

    return configs
