#!/usr/bin/env python3
"""
Label Catalog for Image Segmentation
Loads the list of class names the model can recognize
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from .errors import InvalidLabelListError

logger = logging.getLogger(__name__)

LABELS_FILE_NAME = "deeplabv3_labels"
LABELS_FILE_EXTENSION = "json"


def default_labels_path() -> Path:
    """Path of the label list bundled with the package"""
    return Path(__file__).parent / "resources" / f"{LABELS_FILE_NAME}.{LABELS_FILE_EXTENSION}"


def load_label_list(path: Optional[Union[str, Path]] = None) -> List[str]:
    """Load label list from a JSON array of class names, index-aligned with class indices"""
    labels_path = Path(path) if path is not None else default_labels_path()

    if not labels_path.is_file():
        logger.error(f"Failed to load the label list file with name: {labels_path.name}")
        raise InvalidLabelListError(labels_path.name, "file not found")

    try:
        with open(labels_path, 'r', encoding='utf-8') as f:
            label_list = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Error parsing label list file {labels_path.name} as JSON: {e}")
        raise InvalidLabelListError(labels_path.name, str(e)) from e

    if not isinstance(label_list, list) or not label_list:
        logger.error(f"Label list file {labels_path.name} is not a non-empty JSON array")
        raise InvalidLabelListError(labels_path.name, "expected a non-empty JSON array")
    if not all(isinstance(label, str) for label in label_list):
        logger.error(f"Label list file {labels_path.name} contains non-string entries")
        raise InvalidLabelListError(labels_path.name, "every entry must be a string")

    logger.debug(f"Loaded {len(label_list)} labels from {labels_path}")
    return label_list
