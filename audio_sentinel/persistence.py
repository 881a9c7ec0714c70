# audio_sentinel/persistence.py
"""Model persistence module for saving and loading models and their calibration."""

import base64
import binascii
import json
import logging
import math
import os
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .config import ModelConfig
from .errors import ConfigurationError, ModelLoadError
from .model import SpectralAutoencoder, prepare_model

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
WEIGHT_DTYPE = '<f4'


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ModelPersistence:
    """Serialises a model and its metadata as one JSON bundle.

    Bundle layout::

        {
          "topology": {"class_name": ..., "config": {...}, "layers": [...]},
          "weights": "<base64 of concatenated little-endian float32 arrays>",
          "weight_layout": [{"name": ..., "shape": [...], "dtype": "float32"}, ...],
          "metadata": {"sample_rate", "input_dim", "trained_at",
                       "base_threshold", "config", "format_version"}
        }
    """

    BUNDLE_EXTENSION = '.sentinel'

    @classmethod
    def to_bundle(cls, model: SpectralAutoencoder, metadata: Dict[str, Any]) -> Dict[str, Any]:
        weights = model.get_weights()
        layout = [
            {
                'name': getattr(variable, 'path', variable.name),
                'shape': list(array.shape),
                'dtype': 'float32'
            }
            for variable, array in zip(model.weights, weights)
        ]
        blob = b''.join(np.ascontiguousarray(w, dtype=WEIGHT_DTYPE).tobytes() for w in weights)

        return {
            'topology': {
                'class_name': type(model).__name__,
                'config': model.get_config(),
                'layers': cls._describe_layers(model)
            },
            'weights': base64.b64encode(blob).decode('ascii'),
            'weight_layout': layout,
            'metadata': {
                'sample_rate': metadata['sample_rate'],
                'input_dim': model.input_dim,
                'trained_at': metadata.get('trained_at'),
                'base_threshold': metadata.get('base_threshold'),
                'config': model.config.to_dict(),
                'format_version': FORMAT_VERSION
            }
        }

    @classmethod
    def to_bytes(cls, model: SpectralAutoencoder, metadata: Dict[str, Any]) -> bytes:
        return json.dumps(cls.to_bundle(model, metadata)).encode('utf-8')

    @classmethod
    def from_bytes(cls,
                   data: bytes,
                   expected_input_dim: Optional[int] = None) -> Tuple[SpectralAutoencoder, Dict[str, Any]]:
        """Rebuild a model and its metadata from bundle bytes.

        Args:
            data: Bundle produced by ``to_bytes``
            expected_input_dim: Reject bundles for a different frame width

        Returns:
            Tuple containing:
                - The restored, compiled SpectralAutoencoder
                - The bundle metadata dictionary

        Raises:
            ModelLoadError: If the bundle is malformed or incompatible
        """
        try:
            bundle = json.loads(data.decode('utf-8') if isinstance(data, (bytes, bytearray)) else data)
            metadata = bundle['metadata']
            topology = bundle['topology']
            layout = bundle['weight_layout']
            blob = base64.b64decode(bundle['weights'], validate=True)
            if not isinstance(metadata, dict) or not isinstance(topology, dict) or not isinstance(layout, list):
                raise TypeError("metadata, topology and weight_layout have the wrong types")
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise ModelLoadError(f"Malformed model bundle: {e}") from e

        if topology.get('class_name') != SpectralAutoencoder.__name__:
            raise ModelLoadError(f"Unsupported model class {topology.get('class_name')!r}")

        cls._validate_metadata(metadata)

        input_dim = metadata['input_dim']
        if expected_input_dim is not None and input_dim != expected_input_dim:
            raise ModelLoadError(f"Bundle input width {input_dim} does not match detector width {expected_input_dim}")

        try:
            declared = ModelConfig.from_dict(metadata['config'])
            declared.validate(input_dim)
            model = SpectralAutoencoder.from_config(topology['config'])
        except (ConfigurationError, KeyError, TypeError, ValueError) as e:
            raise ModelLoadError(f"Invalid model topology in bundle: {e}") from e
        if model.input_dim != input_dim or model.config != declared:
            raise ModelLoadError("Bundle topology does not match its metadata")
        prepare_model(model)

        try:
            model.set_weights(cls._unpack_weights(blob, layout, model.get_weights()))
        except ModelLoadError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ModelLoadError(f"Invalid weight layout in bundle: {e}") from e
        logger.info(f"Restored model trained at {metadata.get('trained_at')}")
        return model, metadata

    @classmethod
    def save_bundle(cls, detector, save_path: str) -> str:
        """Write the detector's model to ``save_path``."""
        if not save_path.endswith(cls.BUNDLE_EXTENSION):
            save_path += cls.BUNDLE_EXTENSION
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = detector.save()
        with open(save_path, 'wb') as f:
            f.write(data)
        logger.info(f"Model saved to {save_path}")
        return save_path

    @classmethod
    def load_bundle(cls, detector, load_path: str) -> None:
        """Load a bundle file into the detector."""
        if not os.path.exists(load_path):
            raise ModelLoadError(f"Model bundle not found at {load_path}")
        with open(load_path, 'rb') as f:
            detector.load(f.read())

    @staticmethod
    def _validate_metadata(metadata: Dict[str, Any]) -> None:
        """Raise ModelLoadError unless every metadata field is usable as-is."""
        for key in ('sample_rate', 'input_dim', 'base_threshold', 'config'):
            if key not in metadata:
                raise ModelLoadError(f"Bundle metadata is missing {key!r}")

        version = metadata.get('format_version', FORMAT_VERSION)
        if not _is_int(version) or version < 1:
            raise ModelLoadError(f"Invalid bundle format version {version!r}")
        if version > FORMAT_VERSION:
            raise ModelLoadError(f"Bundle format {version} is newer than supported format {FORMAT_VERSION}")

        for key in ('sample_rate', 'input_dim'):
            if not _is_int(metadata[key]) or metadata[key] <= 0:
                raise ModelLoadError(f"{key} must be a positive integer, got {metadata[key]!r}")

        base = metadata['base_threshold']
        if base is not None and (not _is_number(base) or not math.isfinite(base) or base < 0):
            raise ModelLoadError(f"base_threshold must be a finite non-negative number or null, got {base!r}")

        trained_at = metadata.get('trained_at')
        if trained_at is not None and not isinstance(trained_at, str):
            raise ModelLoadError(f"trained_at must be a string or null, got {trained_at!r}")

        if not isinstance(metadata['config'], dict):
            raise ModelLoadError("Bundle metadata config must be an object")

    @staticmethod
    def _unpack_weights(blob: bytes, layout: List[Dict[str, Any]], reference: List[np.ndarray]) -> List[np.ndarray]:
        if len(layout) != len(reference):
            raise ModelLoadError(f"Bundle has {len(layout)} weight tensors, model expects {len(reference)}")

        arrays = []
        offset = 0
        for entry, expected in zip(layout, reference):
            shape = tuple(entry['shape'])
            if shape != expected.shape:
                raise ModelLoadError(f"Weight {entry.get('name')} has shape {shape}, expected {expected.shape}")
            size = int(np.prod(shape)) * np.dtype(WEIGHT_DTYPE).itemsize
            if offset + size > len(blob):
                raise ModelLoadError("Weight data is truncated")
            arrays.append(np.frombuffer(blob, dtype=WEIGHT_DTYPE, count=int(np.prod(shape)), offset=offset)
                          .reshape(shape).astype(np.float32))
            offset += size

        if offset != len(blob):
            raise ModelLoadError(f"Weight data has {len(blob) - offset} unexpected trailing bytes")
        return arrays

    @staticmethod
    def _describe_layers(model: SpectralAutoencoder) -> List[Dict[str, Any]]:
        layers = []
        for part in (model.encoder, model.decoder):
            for layer in part.layers:
                layers.append({
                    'name': layer.name,
                    'units': getattr(layer, 'units', None),
                    'activation': getattr(getattr(layer, 'activation', None), '__name__', None)
                })
        return layers
