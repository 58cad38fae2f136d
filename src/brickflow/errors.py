"""Error hierarchy for the brickflow runtime.

Errors are split by audience. :class:`BusinessError` and its subclasses
describe problems with user-authored content (a missing brick, an invalid
argument, a broken template) and are always safe to show to the mod
author. :class:`CancelError` marks a voluntary abort and should not be
reported as a failure. :class:`ContextError` wraps any of the above with
the location of the failing step without hiding the original cause.
Anything else is an unexpected system error and propagates unwrapped.
"""

from __future__ import annotations

import builtins
from typing import Any


class BrickflowError(Exception):
    """Base exception for all brickflow errors."""


class BusinessError(BrickflowError):
    """An error caused by user-authored content rather than the runtime."""


class BrickNotFoundError(BusinessError):
    """The brick id of a step does not resolve in the registry."""

    def __init__(self, brick_id: str) -> None:
        super().__init__(f"Brick not available: {brick_id}")
        self.brick_id = brick_id


class InputValidationError(BusinessError):
    """Rendered brick arguments do not match the brick's input schema.

    Attributes:
        schema: The JSON Schema the input was validated against.
        input: The rendered arguments.
        errors: Validation errors, each a ``{"path": ..., "message": ...}`` dict.
    """

    def __init__(
        self,
        message: str,
        schema: dict[str, Any],
        input: Any,
        errors: list[dict[str, Any]],
    ) -> None:
        super().__init__(message)
        self.schema = schema
        self.input = input
        self.errors = errors

    @property
    def paths(self) -> list[str]:
        """Field paths of the offending values."""
        return [e["path"] for e in self.errors]

    def __str__(self) -> str:
        if not self.errors:
            return self.args[0]
        details = "; ".join(
            f"{e['path'] or '<root>'}: {e['message']}" for e in self.errors
        )
        return f"{self.args[0]} ({details})"


class PropError(BusinessError):
    """A single brick argument has an invalid value."""

    def __init__(self, message: str, brick_id: str, prop: str, value: Any) -> None:
        super().__init__(message)
        self.brick_id = brick_id
        self.prop = prop
        self.value = value


class TemplateRenderError(BusinessError):
    """A template expression could not be rendered."""

    def __init__(self, message: str, *, engine: str = "", template: str = "") -> None:
        super().__init__(message)
        self.engine = engine
        self.template = template


class OutputKeyError(BusinessError):
    """A step's output key is not a valid, non-reserved identifier."""


class PipelineConfigurationError(BusinessError):
    """A stored pipeline definition cannot be parsed."""


class CancelError(BrickflowError):
    """Execution was cancelled voluntarily (abort signal or supersession)."""


class HeadlessModeError(BrickflowError):
    """A renderer was reached while running in headless mode.

    An expected error: the caller is responsible for rendering
    ``brick_args`` with ``ctxt`` elsewhere.
    """

    def __init__(self, brick_id: str, brick_args: Any, ctxt: Any) -> None:
        super().__init__(f"{brick_id} is a renderer")
        self.brick_id = brick_id
        self.brick_args = brick_args
        self.ctxt = ctxt


class ContextError(BrickflowError):
    """Wraps an error with the location at which it occurred.

    The wrapped error is available as both :attr:`cause` and
    ``__cause__``, so tracebacks show the full chain and
    :func:`get_root_cause` can unwrap nested wrappers.

    Attributes:
        cause: The wrapped exception.
        context: Location metadata such as ``step_index``, ``brick_id``
            and ``instance_id``.
    """

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.context = context or {}
        self.__cause__ = cause


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iter_causes(error: BaseException):
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def get_root_cause(error: BaseException) -> BaseException:
    """Return the innermost cause of *error*, following ``__cause__`` links."""
    root = error
    for root in _iter_causes(error):
        pass
    return root


def select_specific_error(
    error: BaseException, error_type: type[BaseException]
) -> BaseException | None:
    """Return the first error in the cause chain that is an *error_type*."""
    for candidate in _iter_causes(error):
        if isinstance(candidate, error_type):
            return candidate
    return None


def has_specific_error_cause(
    error: BaseException, error_type: type[BaseException]
) -> bool:
    """Return ``True`` if *error* or any of its causes is an *error_type*."""
    return select_specific_error(error, error_type) is not None


def is_business_error(error: BaseException) -> bool:
    return has_specific_error_cause(error, BusinessError)


def is_cancel_error(error: BaseException) -> bool:
    return has_specific_error_cause(error, CancelError)


def get_error_message(error: BaseException, default: str = "Unknown error") -> str:
    """Return a human-readable message for *error*."""
    message = str(error)
    return message or default


_KNOWN_ERRORS: dict[str, type[BaseException]] = {
    cls.__name__: cls
    for cls in (
        BrickflowError,
        BusinessError,
        BrickNotFoundError,
        InputValidationError,
        PropError,
        TemplateRenderError,
        OutputKeyError,
        PipelineConfigurationError,
        CancelError,
        HeadlessModeError,
        ContextError,
    )
}


def serialize_error(error: BaseException) -> dict[str, Any]:
    """Serialize *error* and its cause chain to a JSON-compatible dict."""
    data: dict[str, Any] = {
        "name": type(error).__name__,
        "message": get_error_message(error, default=""),
    }
    if error.__cause__ is not None:
        data["cause"] = serialize_error(error.__cause__)
    return data


def deserialize_error(data: dict[str, Any]) -> BaseException:
    """Rebuild an exception from :func:`serialize_error` output.

    Brickflow errors and builtin exceptions are restored to their own
    class; other names become a plain :class:`Exception` carrying the
    original message. Constructor arguments beyond the message are not
    preserved.
    """
    name = data.get("name", "Exception")
    message = data.get("message", "")
    cause = deserialize_error(data["cause"]) if data.get("cause") else None

    cls = _KNOWN_ERRORS.get(name)
    if cls is None:
        builtin = getattr(builtins, name, None)
        if isinstance(builtin, type) and issubclass(builtin, Exception):
            cls = builtin

    error: BaseException
    if cls is None:
        error = Exception(message)
    elif cls is ContextError:
        error = ContextError(message, cause=cause or Exception(message))
    else:
        # Bypass subclass constructors with extra required arguments
        error = cls.__new__(cls)
        Exception.__init__(error, message)
        if cls is InputValidationError:
            error.schema, error.input, error.errors = {}, None, []  # type: ignore[attr-defined]

    if cause is not None:
        error.__cause__ = cause
    return error
