"""
Structural type checking for field values.

Schema consumes a single capability from this module:

    check(value, pattern) -> None | TypeMismatch

It never raises for a mismatch; it returns a TypeMismatch describing the
first offending position. Supported patterns:

- plain classes: isinstance, except that bool is not accepted as int and
  int is accepted as float (numeric tower)
- typing generics: list[int], Dict[str, int], tuple[int, ...], Optional[...],
  Union[...], Literal[...], Annotated[...], Any
- list literals [A, B]: a list whose items each match one of the patterns
- tuple literals (A, B): value matches any of the patterns
- dict literals {'key': pattern}: every key present and matching
- Rule instances: IfExists(pattern), OneOf(*values), Rule(predicate)
- anything else: compared by equality
"""

import types
import typing
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union, get_args, get_origin

from livemodel.meta import UNDEFINED

_UNION_ORIGINS = (Union, types.UnionType)


class TypeMismatch(TypeError):
    """A value does not satisfy a type pattern.

    Attributes:
        value: The offending value (innermost)
        should: The pattern it failed
        path: Key path from the checked value to the offending value
        reason: 'mistaken', 'missing' or 'overflow'
    """

    def __init__(self, value: Any, should: Any, path: Tuple = (), reason: str = 'mistaken'):
        self.value = value
        self.should = should
        self.path = tuple(path)
        self.reason = reason
        super().__init__(self._describe())

    def _describe(self) -> str:
        where = ''.join(f'[{p!r}]' for p in self.path)
        if self.reason == 'missing':
            return f"missing key at {where or '<root>'}, should match {pattern_name(self.should)}"
        return f"{self.value!r}{' at ' + where if where else ''} does not match {pattern_name(self.should)}"

    def within(self, key: Any) -> 'TypeMismatch':
        """Return a copy whose path is prefixed with `key`."""
        return TypeMismatch(self.value, self.should, (key,) + self.path, self.reason)


class Rule:
    """Predicate-backed pattern.

    Example:
        Positive = Rule(lambda v: isinstance(v, (int, float)) and v > 0, 'Positive')
    """

    def __init__(self, predicate: Callable[[Any], bool], name: str = 'Rule'):
        self.predicate = predicate
        self.name = name

    def check(self, value: Any) -> Optional[TypeMismatch]:
        return None if self.predicate(value) else TypeMismatch(value, self)

    def __repr__(self) -> str:
        return self.name


class IfExists(Rule):
    """Pattern that passes for None/UNDEFINED and otherwise defers to `pattern`."""

    def __init__(self, pattern: Any):
        self.pattern = pattern
        super().__init__(self._matches, f'IfExists({pattern_name(pattern)})')

    def _matches(self, value: Any) -> bool:
        return value is None or value is UNDEFINED or check(value, self.pattern) is None

    def check(self, value: Any) -> Optional[TypeMismatch]:
        if value is None or value is UNDEFINED:
            return None
        return check(value, self.pattern)


class OneOf(Rule):
    """Pattern that passes when the value equals one of `values`."""

    def __init__(self, *values: Any):
        self.values = values
        super().__init__(lambda value: any(_literal_equal(value, v) for v in values),
                         f"OneOf({', '.join(repr(v) for v in values)})")


def pattern_name(pattern: Any) -> str:
    """Readable name of a pattern for messages."""
    if isinstance(pattern, type):
        return pattern.__name__
    if isinstance(pattern, list):
        return f"[{', '.join(pattern_name(p) for p in pattern)}]"
    if isinstance(pattern, dict):
        return '{' + ', '.join(f'{k!r}: {pattern_name(p)}' for k, p in pattern.items()) + '}'
    return repr(pattern)


def _literal_equal(a: Any, b: Any) -> bool:
    # keep True != 1 for literal comparisons
    return type(a) is type(b) and a == b if isinstance(a, bool) or isinstance(b, bool) else a == b


def _check_class(value: Any, pattern: type) -> Optional[TypeMismatch]:
    if pattern is object:
        return None
    if pattern is int and isinstance(value, bool):
        return TypeMismatch(value, pattern)
    if pattern is float and isinstance(value, int) and not isinstance(value, bool):
        return None
    return None if isinstance(value, pattern) else TypeMismatch(value, pattern)


def _check_items(value: Sequence, patterns: Sequence[Any]) -> Optional[TypeMismatch]:
    for index, item in enumerate(value):
        errors = [check(item, p) for p in patterns]
        if all(errors):
            return errors[0].within(index) if len(patterns) == 1 else TypeMismatch(item, list(patterns), (index,))
    return None


def _check_generic(value: Any, pattern: Any, origin: Any) -> Optional[TypeMismatch]:
    args = get_args(pattern)

    if origin in _UNION_ORIGINS:
        return None if any(check(value, arg) is None for arg in args) else TypeMismatch(value, pattern)

    if origin is typing.Literal:
        return None if any(_literal_equal(value, arg) for arg in args) else TypeMismatch(value, pattern)

    if origin is typing.Annotated:
        return check(value, args[0])

    if not isinstance(origin, type) or not isinstance(value, origin):
        return TypeMismatch(value, pattern)

    if not args:
        return None

    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return _check_items(value, [args[0]])
        if args == ((),):
            args = ()
        if len(value) != len(args):
            return TypeMismatch(value, pattern)
        for index, (item, arg) in enumerate(zip(value, args)):
            error = check(item, arg)
            if error:
                return error.within(index)
        return None

    if isinstance(value, Mapping):
        key_pattern, value_pattern = args if len(args) == 2 else (Any, args[0])
        for key, item in value.items():
            error = check(key, key_pattern) or check(item, value_pattern)
            if error:
                return error.within(key)
        return None

    return _check_items(list(value), [args[0]])


def check(value: Any, pattern: Any) -> Optional[TypeMismatch]:
    """Check `value` against `pattern`.

    Returns:
        None when the value matches, a TypeMismatch otherwise.
    """
    if pattern is Any:
        return None

    if isinstance(pattern, Rule):
        return pattern.check(value)

    origin = get_origin(pattern)
    if origin is not None:
        return _check_generic(value, pattern, origin)

    if isinstance(pattern, type):
        return _check_class(value, pattern)

    if isinstance(pattern, list):
        if not isinstance(value, list):
            return TypeMismatch(value, pattern)
        return _check_items(value, pattern) if pattern else None

    if isinstance(pattern, tuple):
        return None if any(check(value, p) is None for p in pattern) else TypeMismatch(value, pattern)

    if isinstance(pattern, dict):
        if not isinstance(value, Mapping):
            return TypeMismatch(value, pattern)
        for key, sub_pattern in pattern.items():
            if key not in value:
                if isinstance(sub_pattern, Rule) and sub_pattern.check(UNDEFINED) is None:
                    continue
                return TypeMismatch(UNDEFINED, sub_pattern, (key,), reason='missing')
            error = check(value[key], sub_pattern)
            if error:
                return error.within(key)
        return None

    return None if _literal_equal(value, pattern) else TypeMismatch(value, pattern)


def is_type(value: Any, pattern: Any) -> bool:
    """Whether `value` matches `pattern`."""
    return check(value, pattern) is None


def assert_type(value: Any, pattern: Any) -> None:
    """Raise the TypeMismatch when `value` does not match `pattern`."""
    error = check(value, pattern)
    if error:
        raise error
