"""Tests for the error hierarchy and helpers."""

import pytest

from brickflow.errors import (
    BrickNotFoundError,
    BusinessError,
    CancelError,
    ContextError,
    InputValidationError,
    PropError,
    deserialize_error,
    get_error_message,
    get_root_cause,
    has_specific_error_cause,
    is_business_error,
    is_cancel_error,
    select_specific_error,
    serialize_error,
)


def _wrapped(cause: BaseException, depth: int = 2) -> ContextError:
    error: BaseException = cause
    for index in range(depth):
        error = ContextError(f"stage #{index + 1}", cause=error)
    return error


class TestCauseChain:
    def test_root_cause(self) -> None:
        cause = BusinessError("bad input")
        assert get_root_cause(_wrapped(cause)) is cause
        assert get_root_cause(cause) is cause

    def test_classification_through_wrappers(self) -> None:
        assert is_business_error(_wrapped(BrickNotFoundError("x")))
        assert is_cancel_error(_wrapped(CancelError("stop")))
        assert not is_cancel_error(_wrapped(BusinessError("x")))
        assert not is_business_error(_wrapped(ValueError("x")))

    def test_select_specific_error(self) -> None:
        prop = PropError("bad", "brick", "prop", 1)
        error = _wrapped(prop)
        assert select_specific_error(error, PropError) is prop
        assert select_specific_error(error, CancelError) is None
        assert has_specific_error_cause(error, ContextError)

    def test_error_message_default(self) -> None:
        assert get_error_message(Exception()) == "Unknown error"
        assert get_error_message(BusinessError("shown")) == "shown"


class TestInputValidationError:
    def test_str_lists_paths(self) -> None:
        error = InputValidationError(
            "Invalid inputs for brick x",
            schema={},
            input={},
            errors=[
                {"path": "url", "message": "'url' is required"},
                {"path": "", "message": "not an object"},
            ],
        )
        assert error.paths == ["url", ""]
        assert str(error) == (
            "Invalid inputs for brick x (url: 'url' is required; <root>: not an object)"
        )


class TestSerialization:
    def test_serialize_chain(self) -> None:
        data = serialize_error(_wrapped(BusinessError("boom"), depth=1))
        assert data == {
            "name": "ContextError",
            "message": "stage #1",
            "cause": {"name": "BusinessError", "message": "boom"},
        }

    def test_deserialize_restores_classes(self) -> None:
        error = deserialize_error(serialize_error(_wrapped(PropError("bad", "b", "p", 1))))
        assert isinstance(error, ContextError)
        assert isinstance(error.cause, ContextError)
        root = get_root_cause(error)
        assert isinstance(root, PropError)
        assert str(root) == "bad"

    def test_deserialize_builtin_and_unknown(self) -> None:
        assert isinstance(deserialize_error({"name": "ValueError", "message": "x"}), ValueError)
        unknown = deserialize_error({"name": "SomethingElse", "message": "y"})
        assert type(unknown) is Exception
        assert str(unknown) == "y"

    @pytest.mark.parametrize("name", ["BaseException", "KeyboardInterrupt", "print"])
    def test_deserialize_never_builds_non_exceptions(self, name) -> None:
        assert type(deserialize_error({"name": name, "message": "z"})) is Exception
