#!/usr/bin/env python3
"""
Visualization Utilities for Image Segmentation
Saves segmentation results and draws comparison figures
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import cv2
import numpy as np

# Set matplotlib backend for non-interactive use
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from matplotlib.patches import Patch

from .compositor import ImageBuffer
from .results import SegmentationResult

logger = logging.getLogger(__name__)


def create_comparison_visualization(image: ImageBuffer, result: SegmentationResult,
                                    save_path: str):
    """Draw source, visualization and overlay side by side with the color legend"""
    fig, axes = plt.subplots(1, 3, figsize=(15, 5))

    panels = [
        ('Original Image', image),
        ('Segmentation', result.result_image),
        ('Overlay', result.overlay_image),
    ]
    for ax, (title, panel) in zip(axes, panels):
        ax.imshow(cv2.cvtColor(panel.to_bgr(), cv2.COLOR_BGR2RGB))
        ax.set_title(title)
        ax.axis('off')

    handles = [Patch(facecolor=tuple(color), edgecolor='black', label=label)
               for label, color in result.color_legend.items()]
    if handles:
        fig.legend(handles=handles, loc='lower center', ncol=len(handles))

    plt.tight_layout()
    plt.savefig(save_path, dpi=150, bbox_inches='tight')
    plt.close(fig)


def save_results(result: SegmentationResult, output_dir: str, filename: str,
                 image: Optional[ImageBuffer] = None,
                 metrics: Optional[Dict] = None) -> Dict:
    """Save segmentation images, raw class map and metadata"""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    # Save class map as a viewable mask
    mask_path = output_path / f"{filename}_mask.png"
    cv2.imwrite(str(mask_path), (result.segmentation_map > 0).astype(np.uint8) * 255)

    segmentation_path = output_path / f"{filename}_segmentation.png"
    cv2.imwrite(str(segmentation_path), result.result_image.to_straight_alpha())

    overlay_path = output_path / f"{filename}_overlay.png"
    cv2.imwrite(str(overlay_path), result.overlay_image.to_bgr())

    map_path = output_path / f"{filename}_map.npy"
    np.save(str(map_path), result.segmentation_map)

    saved_paths = {
        'mask_path': str(mask_path),
        'segmentation_path': str(segmentation_path),
        'overlay_path': str(overlay_path),
        'map_path': str(map_path),
    }

    if image is not None:
        comparison_path = output_path / f"{filename}_comparison.png"
        create_comparison_visualization(image, result, str(comparison_path))
        saved_paths['comparison_path'] = str(comparison_path)

    metadata = {
        'filename': filename,
        'map_size': list(result.segmentation_map.shape),
        'timings': result.timings(),
        'color_legend': {label: color.to_hex() for label, color in result.color_legend.items()},
        'timestamp': datetime.now().isoformat(),
    }
    if metrics is not None:
        metadata['metrics'] = metrics

    metadata_path = output_path / f"{filename}_metadata.json"
    with open(metadata_path, 'w') as f:
        json.dump(metadata, f, indent=2)
    saved_paths['metadata_path'] = str(metadata_path)

    logger.info(f"Results saved to {output_path}")
    return saved_paths
