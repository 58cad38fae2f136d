"""Brick contract, registry and built-in bricks."""

from brickflow.bricks.base import Brick, Effect, Reader, Renderer, Transformer
from brickflow.bricks.registry import BrickRegistry, create_default_registry

__all__ = [
    "Brick",
    "BrickRegistry",
    "Effect",
    "Reader",
    "Renderer",
    "Transformer",
    "create_default_registry",
]
