"""
Framework-wide configuration for livemodel.

Two layers, mirroring how configuration is scoped elsewhere in the package:

- BASE: a process-wide ModelConfig set with set_model_config()
- SCOPED: model_config_context(**overrides) replaces it for a block using a
  ContextVar, so nested blocks and concurrent tasks see their own overrides

get_model_config() always returns the innermost active config.
"""

import contextvars
import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Generator, Optional, Tuple

logger = logging.getLogger(__name__)

VALIDATOR_PASS = "pass"
VALIDATOR_FAIL = "fail"


@dataclass(frozen=True)
class ModelConfig:
    """Behavior switches shared by every Schema and Model.

    Attributes:
        validator_failure: What a validator that raises counts as.
            "pass" treats it as passing (the exception is still reported).
            "fail" appends a VALIDATOR_CRASHED error for the field.
        reserved_prefixes: Store keys starting with one of these survive restore().
        log_errors: Whether Model.on_error logs reported errors.
        text_none: Text rendered by FieldView.text for a None value.
    """
    validator_failure: str = VALIDATOR_PASS
    reserved_prefixes: Tuple[str, ...] = ("_", "$")
    log_errors: bool = True
    text_none: str = ""

    def __post_init__(self):
        if self.validator_failure not in (VALIDATOR_PASS, VALIDATOR_FAIL):
            raise ValueError(
                f"validator_failure must be {VALIDATOR_PASS!r} or {VALIDATOR_FAIL!r}, "
                f"got {self.validator_failure!r}"
            )


_base_config: ModelConfig = ModelConfig()

# Innermost override pushed by model_config_context(), None = use base
_scoped_config: contextvars.ContextVar[Optional[ModelConfig]] = contextvars.ContextVar(
    'livemodel_scoped_config', default=None
)


def get_model_config() -> ModelConfig:
    """Return the active configuration (scoped override first, then base)."""
    scoped = _scoped_config.get()
    return scoped if scoped is not None else _base_config


def set_model_config(config: ModelConfig) -> None:
    """Replace the process-wide base configuration."""
    global _base_config
    _base_config = config
    logger.debug(f"Base model config set: {config}")


def reset_model_config() -> None:
    """Restore the built-in defaults. For testing."""
    set_model_config(ModelConfig())


@contextmanager
def model_config_context(**overrides) -> Generator[ModelConfig, None, None]:
    """Override configuration fields for the duration of a block.

    Example:
        with model_config_context(validator_failure="fail"):
            errors = model.validate()

    Args:
        **overrides: ModelConfig field values to replace

    Yields:
        The effective ModelConfig inside the block.
    """
    config = replace(get_model_config(), **overrides)
    token = _scoped_config.set(config)
    try:
        yield config
    finally:
        _scoped_config.reset(token)
