"""
Error records reported by Schema and Model.

Errors in livemodel are data, not exceptions: validation returns a list of
FieldError records, blocked writes return the previous value and report a
record through the owning model's error hook, and exceptions raised by user
hooks are caught and converted into records.

Design Philosophy: Correct by Construction
- Immutable records (frozen dataclass)
- One ErrorKind per failure class, no string matching on messages
- Optional detail fields default to None so records stay comparable
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Failure classes surfaced by the model layer."""
    TYPE_MISMATCH = "type_mismatch"          # value fails the type pattern
    REQUIRED_MISSING = "required_missing"    # required field is empty
    VALIDATOR_FAILED = "validator_failed"    # a validator returned non-True
    VALIDATOR_CRASHED = "validator_crashed"  # a validator raised (fail-closed mode only)
    MUTATION_REJECTED = "mutation_rejected"  # write blocked by disabled/readonly/compute
    UNKNOWN_FIELD = "unknown_field"          # validate() on a name absent from the schema
    STRUCTURAL_MISUSE = "structural_misuse"  # field needs a parent the instance lacks
    HOOK_FAILED = "hook_failed"              # a user hook raised and a fallback was used


@dataclass(frozen=True)
class FieldError:
    """Immutable description of one reported problem.

    Only `kind`, `key` and `message` are always meaningful. The other
    attributes are filled depending on the kind:

    - TYPE_MISMATCH: value, type, error (the TypeMismatch from the checker)
    - REQUIRED_MISSING: value, required=True
    - VALIDATOR_FAILED / VALIDATOR_CRASHED: value, validator (index), error
    - MUTATION_REJECTED: value (the rejected next value), action='set' and one
      of disabled / readonly / compute set to True
    - HOOK_FAILED: option (which hook, e.g. 'getter', 'validators[0].validate'), error
    - STRUCTURAL_MISUSE: action (what was attempted), option
    """
    kind: ErrorKind
    key: Optional[str]
    message: str = ""
    value: Any = None
    type: Any = None
    error: Optional[BaseException] = None
    required: bool = False
    validator: Optional[int] = None
    disabled: bool = False
    readonly: bool = False
    compute: bool = False
    action: Optional[str] = None
    option: Optional[str] = None

    def with_message(self, message: str) -> 'FieldError':
        """Return a copy carrying a different message."""
        return replace(self, message=message)

    def to_dict(self) -> Dict[str, Any]:
        """Export the populated attributes as a plain dict."""
        output: Dict[str, Any] = {'kind': self.kind.value, 'key': self.key, 'message': self.message}
        for name in ('value', 'type', 'error', 'validator', 'action', 'option'):
            value = getattr(self, name)
            if value is not None:
                output[name] = value
        for flag in ('required', 'disabled', 'readonly', 'compute'):
            if getattr(self, flag):
                output[flag] = True
        return output

    def __str__(self) -> str:
        return self.message or f"{self.kind.value}: {self.key}"
