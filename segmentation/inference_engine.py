#!/usr/bin/env python3
"""
Inference Engine for Image Segmentation
Model backends that turn an image tensor into per-pixel class predictions
"""
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn
from torchvision.models import segmentation as segmentation_models

from .config import SegmentationConfig, get_model_configs
from .errors import InvalidModelError

logger = logging.getLogger(__name__)

# ImageNet statistics the torchvision DeepLab weights were trained with
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)


class InferenceAdapter(ABC):
    """Black-box segmentation model: [1, D, D, 3] pixels in, [D, D] class predictions out"""

    @property
    @abstractmethod
    def input_shape(self) -> Tuple[int, int, int, int]:
        """Model input shape as (batch, height, width, channels)"""

    @abstractmethod
    def infer(self, tensor: np.ndarray) -> np.ndarray:
        """Run the model on a float32 tensor with pixel values in [0, 255]"""

    @property
    def input_dim(self) -> int:
        return self.input_shape[1]

    def check_input(self, tensor: np.ndarray):
        """Raise ValueError unless the tensor matches the model input shape"""
        if tuple(tensor.shape) != tuple(self.input_shape):
            raise ValueError(f"Expected input tensor of shape {self.input_shape}, got {tuple(tensor.shape)}")

    def get_model_info(self) -> Dict:
        return {
            'model_type': type(self).__name__,
            'input_shape': list(self.input_shape),
        }


def get_device(preference: Optional[str] = None) -> torch.device:
    """Pick a torch device, preferring CUDA then MPS when set to auto"""
    if preference and preference != 'auto':
        return torch.device(preference)

    if torch.cuda.is_available():
        return torch.device('cuda')
    if torch.backends.mps.is_available():
        return torch.device('mps')
    return torch.device('cpu')


class DeepLabV3Adapter(InferenceAdapter):
    """DeepLabV3 backend built on torchvision segmentation models"""

    def __init__(self, model_name: str = 'deeplabv3_mobilenet_v3_large',
                 input_dim: int = 513,
                 model_path: Optional[str] = None,
                 pretrained: bool = True,
                 device: Optional[str] = None,
                 model: Optional[nn.Module] = None):
        self.model_name = model_name
        self.model_path = Path(model_path) if model_path else None
        self.pretrained = pretrained
        self.device = get_device(device)
        self._input_dim = input_dim

        if model is None:
            model = self._load_model()
        self.model = model.to(self.device).eval()

        self._mean = torch.tensor(IMAGENET_MEAN, device=self.device).view(1, 3, 1, 1)
        self._std = torch.tensor(IMAGENET_STD, device=self.device).view(1, 3, 1, 1)

        logger.info(f"DeepLabV3 adapter ready on {self.device} (input {input_dim}x{input_dim})")

    def _load_model(self) -> nn.Module:
        """Build the preset architecture and load its weights"""
        configs = get_model_configs()
        if self.model_name not in configs:
            raise InvalidModelError(self.model_name, "unknown model preset")
        preset = configs[self.model_name]
        builder = getattr(segmentation_models, preset['builder'])

        if self.model_path is None:
            weights = getattr(segmentation_models, preset['weights']).DEFAULT if self.pretrained else None
            logger.info(f"Loading {self.model_name} (pretrained={self.pretrained})...")
            return builder(weights=weights, weights_backbone=None, num_classes=None if weights else preset['n_classes'])

        if not self.model_path.exists():
            raise InvalidModelError(self.model_name, f"model file not found: {self.model_path}")

        model = builder(weights=None, weights_backbone=None, num_classes=preset['n_classes'], aux_loss=False)
        checkpoint = torch.load(self.model_path, map_location='cpu')

        # Handle different checkpoint formats
        if 'model_state_dict' in checkpoint:
            state_dict = checkpoint['model_state_dict']
            logger.info(f"Loaded checkpoint from epoch {checkpoint.get('epoch', 'unknown')}")
        else:
            state_dict = checkpoint
        state_dict = {k: v for k, v in state_dict.items() if not k.startswith('aux_classifier.')}
        model.load_state_dict(state_dict)
        logger.info(f"Model weights loaded from: {self.model_path}")
        return model

    @property
    def input_shape(self) -> Tuple[int, int, int, int]:
        return (1, self._input_dim, self._input_dim, 3)

    @torch.no_grad()
    def infer(self, tensor: np.ndarray) -> np.ndarray:
        self.check_input(tensor)

        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32)).to(self.device)
        batch = batch.permute(0, 3, 1, 2) / 255.0
        batch = (batch - self._mean) / self._std

        output = self.model(batch)
        if isinstance(output, dict):
            output = output['out']

        # Most likely class per pixel, reported as float like the raw model output
        prediction = output.argmax(dim=1)[0]
        return prediction.to(torch.float32).cpu().numpy()

    def get_model_info(self) -> Dict:
        info = super().get_model_info()
        info.update({
            'model_name': self.model_name,
            'total_parameters': sum(p.numel() for p in self.model.parameters()),
            'device': str(self.device),
            'model_path': str(self.model_path) if self.model_path else None,
        })
        return info


def create_adapter(config: SegmentationConfig) -> InferenceAdapter:
    """Create the inference backend described by a configuration"""
    return DeepLabV3Adapter(
        model_name=config.model_name,
        input_dim=config.input_dim,
        model_path=config.model_path,
        pretrained=config.pretrained,
        device=config.device,
    )
