"""Picbatch - Random picture batches by category with consistent image storage."""

__version__ = "0.1.0"

from picbatch.core.config import PicbatchConfig, config
from picbatch.core.coordinator import ConsistencyCoordinator
from picbatch.core.sampler import Sampler

__all__ = [
    "ConsistencyCoordinator",
    "PicbatchConfig",
    "Sampler",
    "config",
]
