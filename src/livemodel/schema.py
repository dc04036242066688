"""
Schema: immutable field definitions plus the operations that interpret them.

A Schema maps field names to frozen Meta records and answers every question
the model layer asks about a field: its default, whether it is required,
disabled, readonly or hidden, how a raw value reads (compute/getter) and
writes (gates/setter), how it validates, how input data is restored into
field values and how field values are exported.

Error containment:
    Every user hook runs inside Schema._try(). When a hook raises, a
    HOOK_FAILED FieldError is reported through the error callback (which may
    return a replacement record), the field's `catch` hook may supply a
    replacement result, and otherwise a hook-specific fallback is returned.
    No exception raised by a user hook escapes a Schema method.
"""

import copy
import logging
from dataclasses import fields as dataclass_fields
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from livemodel.config import VALIDATOR_FAIL, get_model_config
from livemodel.errors import ErrorKind, FieldError
from livemodel.meta import UNDEFINED, Evaluation, Meta
from livemodel.paths import is_empty
from livemodel import ty

logger = logging.getLogger(__name__)

_META_ATTRS = frozenset(f.name for f in dataclass_fields(Meta))

# Fallback markers used to detect a crashed validator or setter
_CRASHED = object()
_REJECTED = object()

RECORD = 'record'
EXPORT = 'export'

ErrorCallback = Callable[[FieldError], Optional[FieldError]]


class Schema:
    """Read-only mapping of field name -> Meta.

    Not a collections.abc.Mapping: Schema.get() interprets a field value
    rather than looking up a key. Use schema[key] or schema.meta(key) for
    lookups.
    """

    def __init__(self, metas: Mapping[str, Any], on_error: Optional[ErrorCallback] = None):
        """
        Args:
            metas: Field name -> Meta (or a mapping coerced into a Meta)
            on_error: Receives every reported FieldError; may return a
                      replacement record. Defaults to logging a warning.
        """
        self._metas: Dict[str, Meta] = {key: Meta.coerce(value) for key, value in metas.items()}
        self._on_error = on_error

    # ========== MAPPING PROTOCOL ==========

    def __getitem__(self, key: str) -> Meta:
        return self._metas[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._metas)

    def __len__(self) -> int:
        return len(self._metas)

    def __contains__(self, key: object) -> bool:
        return key in self._metas

    def keys(self) -> List[str]:
        return list(self._metas.keys())

    def items(self) -> List[Tuple[str, Meta]]:
        return list(self._metas.items())

    def meta(self, key: str) -> Optional[Meta]:
        return self._metas.get(key)

    def has(self, key: str) -> bool:
        return key in self._metas

    def __repr__(self) -> str:
        return f"Schema({', '.join(self._metas)})"

    # ========== ERROR CONTAINMENT ==========

    def report(self, error: FieldError) -> FieldError:
        """Send an error to the error callback; return the effective record."""
        if self._on_error is None:
            logger.warning(f"Schema error: {error}")
            return error
        return self._on_error(error) or error

    def _try(self, fn: Callable[[], Any], fallback: Any, key: str, option: str,
             context: Any = None, handle: Optional[Callable[..., Any]] = None) -> Any:
        try:
            return fn()
        except Exception as e:
            error = FieldError(
                kind=ErrorKind.HOOK_FAILED,
                key=key,
                option=option,
                error=e,
                message=f"{key}: {option} raised {type(e).__name__}: {e}",
            )
            reported = self.report(error)
            if handle is not None:
                try:
                    result = handle(context, reported)
                except Exception as inner:
                    logger.warning(f"Error in catch hook of {key!r}: {inner}")
                    result = None
                if result is not None:
                    return result
            return fallback

    # ========== DEFAULTS AND FLAGS ==========

    def default(self, key: str) -> Any:
        """Resolve a field's default (thunks are called, containers deep-copied)."""
        meta = self._metas.get(key)
        if meta is None or meta.default is UNDEFINED:
            return None
        value = meta.default
        if callable(value):
            return self._try(value, None, key, 'default')
        if isinstance(value, (dict, list, set)):
            return copy.deepcopy(value)
        return value

    def _flag(self, key: str, attr: str, context: Any) -> bool:
        meta = self._metas.get(key)
        if meta is None:
            return False
        value = getattr(meta, attr) if attr in _META_ATTRS else meta.extra.get(attr)
        if not value:
            return False
        if callable(value):
            return bool(self._try(lambda: value(context), False, key, attr, context, meta.catch))
        return bool(value)

    def required(self, key: str, context: Any) -> bool:
        return self._flag(key, 'required', context)

    def disabled(self, key: str, context: Any) -> bool:
        return self._flag(key, 'disabled', context)

    def readonly(self, key: str, context: Any) -> bool:
        return self._flag(key, 'readonly', context)

    def hidden(self, key: str, context: Any) -> bool:
        return self._flag(key, 'hidden', context)

    def invoke(self, key: str, attr: str, context: Any, fallback: Any = None,
               evaluation: Evaluation = Evaluation.VALUE) -> Any:
        """Evaluate any Meta attribute or `extra` entry for a view.

        Args:
            key: Field name
            attr: Meta attribute name or extra key
            context: Model passed to callables
            fallback: Returned when the attribute is absent or its hook fails
            evaluation: FLAG coerces to bool, VALUE returns as is

        Returns:
            The evaluated attribute.
        """
        meta = self._metas.get(key)
        if meta is None:
            return fallback
        if evaluation is Evaluation.FLAG:
            has_attr = attr in _META_ATTRS or attr in meta.extra
            return self._flag(key, attr, context) if has_attr else fallback

        raw = getattr(meta, attr) if attr in _META_ATTRS else meta.extra.get(attr, UNDEFINED)
        if raw is UNDEFINED or raw is None:
            return fallback
        if callable(raw):
            return self._try(lambda: raw(context), fallback, key, attr, context, meta.catch)
        return raw

    # ========== READ / WRITE ==========

    def get(self, key: str, value: Any, context: Any) -> Any:
        """Transform a raw stored value into the value a reader sees."""
        meta = self._metas.get(key)
        if meta is None:
            return value
        if meta.compute is not None:
            return self._try(lambda: meta.compute(context), value, key, 'compute', context, meta.catch)
        if meta.getter is not None:
            return self._try(lambda: meta.getter(context, value), value, key, 'getter', context, meta.catch)
        return value

    def _reject(self, key: str, next: Any, prev: Any, reason: str) -> Any:
        if reason == 'compute':
            message = f"{key} can not be set new value because it is a computed property."
        else:
            message = f"{key} can not be set new value because of {reason}."
        self.report(FieldError(
            kind=ErrorKind.MUTATION_REJECTED,
            key=key,
            value=next,
            action='set',
            message=message,
            **{reason: True},
        ))
        return prev

    def write(self, key: str, next: Any, prev: Any, context: Any, force: bool = False) -> Tuple[Any, bool]:
        """Run the write gates and setter, telling whether to commit.

        Args:
            force: Skip the disabled/readonly gates (computed fields still refuse)

        Returns:
            (value, accepted). A rejected write, or a setter that raised with
            no catch replacement, yields (prev, False).
        """
        meta = self._metas.get(key)
        if meta is None:
            return next, True
        if not force and self.disabled(key, context):
            return self._reject(key, next, prev, 'disabled'), False
        if not force and self.readonly(key, context):
            return self._reject(key, next, prev, 'readonly'), False
        if meta.compute is not None:
            return self._reject(key, next, prev, 'compute'), False
        if meta.setter is None:
            return next, True
        value = self._try(lambda: meta.setter(context, next), _REJECTED, key, 'setter', context, meta.catch)
        if value is _REJECTED:
            return prev, False
        return value, True

    def set(self, key: str, next: Any, prev: Any, context: Any) -> Any:
        """Run the write gates and setter.

        Returns:
            The value to commit: `prev` when the write is rejected (disabled,
            readonly or computed field), otherwise the setter's result or `next`.
        """
        return self.write(key, next, prev, context)[0]

    def force_set(self, key: str, next: Any, prev: Any, context: Any) -> Any:
        """Like set() but ignoring disabled/readonly. Computed fields still refuse."""
        return self.write(key, next, prev, context, force=True)[0]

    def format(self, key: str, value: Any, context: Any) -> Any:
        """Apply the field's formatter for display (value unchanged without one)."""
        meta = self._metas.get(key)
        if meta is None or meta.formatter is None:
            return value
        return self._try(lambda: meta.formatter(context, value), value, key, 'formatter', context, meta.catch)

    # ========== VALIDATION ==========

    def validate(self, key: str, value: Any, context: Any) -> List[FieldError]:
        """Validate one field value.

        Order: type pattern, required, then every validator. Errors
        accumulate; a failing validator does not stop the following ones.
        """
        meta = self._metas.get(key)
        if meta is None:
            return [FieldError(
                kind=ErrorKind.UNKNOWN_FIELD,
                key=key,
                value=value,
                message=f"Error: {key} is not existing in schema.",
            )]

        errors: List[FieldError] = []

        if meta.type is not None:
            mismatch = ty.check(value, meta.type)
            if mismatch is not None:
                errors.append(FieldError(
                    kind=ErrorKind.TYPE_MISMATCH,
                    key=key,
                    value=value,
                    type=meta.type,
                    error=mismatch,
                    message=f"TypeError: {key} does not match type required.",
                ))

        if self.required(key, context) and is_empty(value):
            errors.append(FieldError(
                kind=ErrorKind.REQUIRED_MISSING,
                key=key,
                value=value,
                required=True,
                message=f"Error: {key} should be required, but receive empty.",
            ))

        fail_closed = get_model_config().validator_failure == VALIDATOR_FAIL

        for index, validator in enumerate(meta.validators):
            option = f'validators[{index}]'
            determine = validator.determine

            if determine is not None and not callable(determine) and not determine:
                continue
            if callable(determine):
                run = self._try(lambda: determine(context, value, key), False,
                                key, f'{option}.determine', context, validator.catch)
                if not run:
                    continue

            result = self._try(lambda: validator.validate(context, value, key), _CRASHED,
                               key, f'{option}.validate', context, validator.catch)
            if result is _CRASHED:
                if fail_closed:
                    errors.append(FieldError(
                        kind=ErrorKind.VALIDATOR_CRASHED,
                        key=key,
                        value=value,
                        validator=index,
                        message=f"{key} could not be validated by {option}.",
                    ))
                continue
            if result is True:
                continue

            message = str(result) if isinstance(result, BaseException) else ''
            if callable(validator.message):
                fallback = message or f"{key} did not pass {option}"
                message = self._try(lambda: validator.message(context, value, key, result), fallback,
                                    key, f'{option}.message', context, validator.catch)
            if not message and isinstance(validator.message, str):
                message = validator.message
            if not message:
                message = f"{key} did not pass {option}"

            errors.append(FieldError(
                kind=ErrorKind.VALIDATOR_FAILED,
                key=key,
                value=value,
                validator=index,
                error=result if isinstance(result, BaseException) else None,
                message=str(message),
            ))

        return errors

    def validate_safe(self, key: str, value: Any, context: Any) -> List[FieldError]:
        """validate() that reports a crashing type checker instead of raising."""
        try:
            return self.validate(key, value, context)
        except Exception as e:
            self.report(FieldError(
                kind=ErrorKind.HOOK_FAILED,
                key=key,
                option='type',
                error=e,
                message=f"{key}: type check raised {type(e).__name__}: {e}",
            ))
            return []

    # ========== RESTORE / FORMULATE ==========

    def restore(self, data: Mapping[str, Any], context: Any) -> Dict[str, Any]:
        """Resolve every field's value from input data.

        `create(model, data)` wins when present (falling back to data[key] if
        it raises); a missing value, or None returned by create, resolves to
        the field's default.
        """
        output: Dict[str, Any] = {}
        for key, meta in self._metas.items():
            value = data.get(key, UNDEFINED)
            coming = value
            if meta.create is not None:
                coming = self._try(lambda: meta.create(context, data), value, key, 'create', context, meta.catch)
                if coming is None:
                    coming = UNDEFINED
            output[key] = self.default(key) if coming is UNDEFINED else coming
        return output

    def formulate(self, data: Mapping[str, Any], context: Any, intent: str = EXPORT) -> Dict[str, Any]:
        """Build output data from field values.

        intent 'export': `flat` results are collected into a patch applied
        last (so flattened keys win), `drop` omits a field, `map` transforms it.
        intent 'record': only `record` hooks apply; each returns a patch that
        replaces the field in place.
        """
        if intent == RECORD:
            return self._formulate_record(data, context)

        patch: Dict[str, Any] = {}
        output: Dict[str, Any] = {}

        for key, meta in self._metas.items():
            value = data.get(key)

            if meta.flat is not None:
                res = self._try(lambda: meta.flat(context, value, key, data) or {}, {},
                                key, 'flat', context, meta.catch)
                patch.update(res)

            drop = meta.drop
            if callable(drop):
                if self._try(lambda: drop(context, value, key, data), False, key, 'drop', context, meta.catch):
                    continue
            elif drop:
                continue

            if meta.map is not None:
                output[key] = self._try(lambda: meta.map(context, value, key, data), value,
                                        key, 'map', context, meta.catch)
            else:
                output[key] = value

        output.update(patch)
        return output

    def _formulate_record(self, data: Mapping[str, Any], context: Any) -> Dict[str, Any]:
        output: Dict[str, Any] = {}
        for key, meta in self._metas.items():
            value = data.get(key)
            if meta.record is not None:
                res = self._try(lambda: meta.record(context, value, key, data), {key: value},
                                key, 'record', context, meta.catch)
                output.update(res or {})
            else:
                output[key] = value
        return output

    def record(self, data: Mapping[str, Any], context: Any) -> Dict[str, Any]:
        return self.formulate(data, context, RECORD)

    def export(self, data: Mapping[str, Any], context: Any) -> Dict[str, Any]:
        return self.formulate(data, context, EXPORT)
