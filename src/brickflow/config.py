"""Runtime settings.

Defaults for options that callers usually leave unset, read from
``BRICKFLOW_*`` environment variables. The CLI loads ``.env.local`` and
``.env`` before calling :meth:`RuntimeSettings.from_env`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from brickflow.runtime.evaluator import boolean
from brickflow.runtime.models import ApiVersion, ReduceOptions

logger = logging.getLogger(__name__)

ENV_PREFIX = "BRICKFLOW_"


@dataclass
class RuntimeSettings:
    """Process-wide defaults for pipeline runs.

    Attributes:
        api_version: API version used when a pipeline does not declare one.
        log_values: Log rendered inputs and outputs of every step at DEBUG.
        validate_input: Validate rendered args against input schemas.
        autoescape: HTML-escape values interpolated into templates.
        http_timeout: Timeout in seconds of requests made by the HTTP brick.
    """

    api_version: ApiVersion = ApiVersion.V3
    log_values: bool = False
    validate_input: bool = True
    autoescape: bool = True
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        self.api_version = ApiVersion(self.api_version)
        if self.http_timeout <= 0:
            raise ValueError(f"http_timeout must be > 0, got {self.http_timeout}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RuntimeSettings:
        """Build settings from *env* (or ``os.environ``).

        Raises:
            ValueError: If a variable holds an invalid value.
        """
        source = os.environ if env is None else env
        kwargs: dict[str, object] = {}

        version = source.get(f"{ENV_PREFIX}API_VERSION")
        if version:
            try:
                kwargs["api_version"] = ApiVersion(version.strip().lower())
            except ValueError as exc:
                raise ValueError(
                    f"{ENV_PREFIX}API_VERSION must be one of v1, v2, v3, got {version!r}"
                ) from exc
        for name in ("log_values", "validate_input", "autoescape"):
            raw = source.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                kwargs[name] = boolean(raw)
        timeout = source.get(f"{ENV_PREFIX}HTTP_TIMEOUT")
        if timeout:
            try:
                kwargs["http_timeout"] = float(timeout)
            except ValueError as exc:
                raise ValueError(
                    f"{ENV_PREFIX}HTTP_TIMEOUT must be a number, got {timeout!r}"
                ) from exc

        settings = cls(**kwargs)  # type: ignore[arg-type]
        logger.debug("Loaded runtime settings: %s", settings)
        return settings

    def reduce_options(self, **overrides: object) -> ReduceOptions:
        """Return :class:`ReduceOptions` seeded from these settings."""
        options = ReduceOptions(
            validate_input=self.validate_input,
            log_values=self.log_values,
            autoescape=self.autoescape,
        )
        for key, value in overrides.items():
            setattr(options, key, value)
        return options
