"""Brick registry.

The :class:`BrickRegistry` maps brick ids to brick instances and is used
by the reducer to dispatch steps. Registries are explicit objects passed
to the reducer; there is no process-wide registry.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from brickflow.bricks.base import Brick
from brickflow.errors import BrickNotFoundError

if TYPE_CHECKING:
    from brickflow.config import RuntimeSettings

logger = logging.getLogger(__name__)


class BrickRegistry:
    """Registry mapping brick ids to brick instances."""

    def __init__(self, bricks: list[Brick] | None = None) -> None:
        self._bricks: dict[str, Brick] = {}
        if bricks:
            self.register(*bricks)

    def register(self, *bricks: Brick) -> None:
        """Register *bricks*, replacing any brick with the same id.

        Args:
            bricks: The brick instances to register.
        """
        for brick in bricks:
            if brick.id in self._bricks:
                logger.debug("Replacing registered brick %s", brick.id)
            self._bricks[brick.id] = brick

    def lookup(self, brick_id: str) -> Brick | None:
        """Return the brick for *brick_id*, or ``None``."""
        return self._bricks.get(brick_id)

    def resolve(self, brick_id: str) -> Brick:
        """Return the brick for *brick_id*.

        Raises:
            BrickNotFoundError: If no brick is registered under *brick_id*.
        """
        brick = self._bricks.get(brick_id)
        if brick is None:
            raise BrickNotFoundError(brick_id)
        return brick

    def has(self, brick_id: str) -> bool:
        return brick_id in self._bricks

    def ids(self) -> list[str]:
        return sorted(self._bricks)

    def all(self) -> list[Brick]:
        return [self._bricks[brick_id] for brick_id in self.ids()]

    def clear(self) -> None:
        self._bricks.clear()

    def __len__(self) -> int:
        return len(self._bricks)

    def __contains__(self, brick_id: object) -> bool:
        return brick_id in self._bricks


def create_default_registry(settings: RuntimeSettings | None = None) -> BrickRegistry:
    """Create a :class:`BrickRegistry` pre-loaded with built-in bricks.

    Args:
        settings: Runtime settings; configures the HTTP brick's timeout.
    """
    from brickflow.bricks.builtin import IdentityTransformer, LogEffect, ThrowError
    from brickflow.bricks.control_flow import (
        ForEach,
        IfElse,
        MapValues,
        Retry,
        TryExcept,
        WithAsyncModVariable,
        WithCache,
    )
    from brickflow.bricks.http import HttpRequest

    registry = BrickRegistry()
    registry.register(
        IdentityTransformer(),
        ThrowError(),
        LogEffect(),
        HttpRequest(timeout=settings.http_timeout if settings else 30.0),
        ForEach(),
        MapValues(),
        Retry(),
        TryExcept(),
        IfElse(),
        WithCache(),
        WithAsyncModVariable(),
    )
    return registry
