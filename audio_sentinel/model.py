# audio_sentinel/model.py
"""Autoencoder model for anomaly detection."""

from typing import Optional

import numpy as np
import tensorflow as tf

from .config import ModelConfig


class SpectralAutoencoder(tf.keras.Model):
    """Dense autoencoder over magnitude-spectrum frames.

    The encoder narrows the input through ``config.encoder_dims()`` down to a
    ``latent_dim`` bottleneck; the decoder mirrors it back to ``input_dim``
    with a sigmoid output so reconstructions stay in ``[0, 1]``.
    """

    def __init__(
        self,
        input_dim: int,
        config: ModelConfig = None,
        name: str = 'spectral_autoencoder',
        **kwargs
    ):
        super().__init__(name=name, **kwargs)
        self.input_dim = input_dim
        self.config = config if config is not None else ModelConfig()

        self.encoder = self._build_encoder()
        self.decoder = self._build_decoder()

    def _build_encoder(self) -> tf.keras.Sequential:
        layers = [tf.keras.Input(shape=(self.input_dim,))]
        for i, units in enumerate(self.config.encoder_dims()):
            layers.append(tf.keras.layers.Dense(
                units,
                activation='relu',
                kernel_initializer='he_normal',
                name=f'encoder_dense_{i + 1}'
            ))

        # Bottleneck
        layers.append(tf.keras.layers.Dense(
            self.config.latent_dim,
            activation='relu',
            kernel_initializer='he_normal',
            name='latent'
        ))
        return tf.keras.Sequential(layers, name='encoder')

    def _build_decoder(self) -> tf.keras.Sequential:
        layers = [tf.keras.Input(shape=(self.config.latent_dim,))]
        for i, units in enumerate(reversed(self.config.encoder_dims())):
            layers.append(tf.keras.layers.Dense(
                units,
                activation='relu',
                kernel_initializer='he_normal',
                name=f'decoder_dense_{i + 1}'
            ))

        # Output saturates at [0, 1]
        layers.append(tf.keras.layers.Dense(self.input_dim, activation='sigmoid', name='reconstruction'))
        return tf.keras.Sequential(layers, name='decoder')

    def call(self, inputs: tf.Tensor, training: bool = False) -> tf.Tensor:
        encoded = self.encoder(inputs, training=training)
        return self.decoder(encoded, training=training)

    def compile_model(self, learning_rate: Optional[float] = None):
        """Compile model with MSE loss."""
        lr = learning_rate if learning_rate is not None else self.config.learning_rate
        self.compile(
            optimizer=tf.keras.optimizers.Adam(lr),
            loss='mse'
        )

    def reconstruction_errors(self, frames: np.ndarray, batch_size: int = 1024) -> np.ndarray:
        """Per-frame reconstruction MSE for inputs already scaled to [0, 1]."""
        frames = np.asarray(frames, dtype=np.float32).reshape(-1, self.input_dim)
        errors = []
        for start in range(0, len(frames), batch_size):
            batch = frames[start:start + batch_size]
            reconstructed = self(batch, training=False).numpy()
            errors.append(np.mean(np.square(batch - reconstructed), axis=1))
        if not errors:
            return np.zeros(0, dtype=np.float32)
        return np.concatenate(errors)

    def get_config(self):
        """Get model configuration."""
        return {
            'name': self.name,
            'input_dim': self.input_dim,
            'config': self.config.to_dict()
        }

    @classmethod
    def from_config(cls, config):
        """Create model from configuration."""
        config = dict(config)

        input_dim = config.pop('input_dim', None)
        if input_dim is None:
            raise ValueError("Could not determine input_dim from config")

        model_config_dict = config.pop('config', None)
        model_config = ModelConfig.from_dict(model_config_dict) if model_config_dict else ModelConfig()

        return cls(
            input_dim=input_dim,
            config=model_config,
            name=config.get('name', 'spectral_autoencoder')
        )


def prepare_model(model: SpectralAutoencoder) -> SpectralAutoencoder:
    """Create the weights of an unbuilt autoencoder and compile it."""
    model(np.zeros((1, model.input_dim), dtype=np.float32))
    model.compile_model()
    return model


def build_model(input_dim: int, config: ModelConfig) -> SpectralAutoencoder:
    """Create, build and compile a fresh autoencoder."""
    return prepare_model(SpectralAutoencoder(input_dim, config))
