"""
Key paths and persistent nested updates.

A key path addresses a value inside nested dicts and lists. It is written as
a string ("profile.tags[0]") or given as a sequence (("profile", "tags", 0))
and normalized to a tuple whose str items are mapping keys and int items are
list indexes.

Nested writes never mutate the previous structure: assign_path() and
remove_path() shallow-copy only the containers on the path to the changed
leaf and share every untouched branch with the previous value.
"""

import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from livemodel.meta import UNDEFINED

KeyPath = Tuple[Union[str, int], ...]

_TOKEN_RE = re.compile(r'([^.\[\]]+)|\[(\d+)\]')

# Immutable scalars compared by value in same_value(); everything else by identity
_SCALARS = (str, int, float, complex, bool, bytes, type(None))


def make_key_path(path: Union[str, int, Sequence[Union[str, int]]]) -> KeyPath:
    """Normalize a key path.

    >>> make_key_path("items[0].name")
    ('items', 0, 'name')
    >>> make_key_path(["items", 0])
    ('items', 0)
    """
    if isinstance(path, tuple):
        return path
    if isinstance(path, int) and not isinstance(path, bool):
        return (path,)
    if isinstance(path, str):
        chain: List[Union[str, int]] = []
        for name, index in _TOKEN_RE.findall(path):
            chain.append(int(index) if index else name)
        return tuple(chain)
    return tuple(path)


def format_key_path(path: Sequence[Union[str, int]]) -> str:
    """Inverse of make_key_path: ('items', 0, 'name') -> 'items[0].name'."""
    text = ''
    for item in path:
        if isinstance(item, int) and not isinstance(item, bool):
            text += f'[{item}]'
        else:
            text += f'.{item}' if text else str(item)
    return text


def _child(container: Any, key: Union[str, int]) -> Any:
    if isinstance(container, Mapping):
        return container.get(key, UNDEFINED)
    if isinstance(container, (list, tuple)) and isinstance(key, int):
        return container[key] if -len(container) <= key < len(container) else UNDEFINED
    if isinstance(key, str) and container is not None and container is not UNDEFINED:
        return getattr(container, key, UNDEFINED)
    return UNDEFINED


def read_path(obj: Any, path: Sequence[Union[str, int]], default: Any = UNDEFINED) -> Any:
    """Read a nested value, returning `default` when any step is missing.

    Mappings are indexed by key, lists and tuples by int index, any other
    object by attribute (so nested models are read through their accessors).
    """
    current = obj
    for key in path:
        current = _child(current, key)
        if current is UNDEFINED:
            return default
    return current


def assign_path(obj: Any, path: Sequence[Union[str, int]], value: Any) -> Any:
    """Return a copy of `obj` with `value` placed at `path`.

    Only the containers along `path` are copied. Missing containers are
    created: a list when the next key is an int, a dict otherwise.
    """
    if not path:
        return value

    key, rest = path[0], path[1:]

    if isinstance(obj, list) or (isinstance(key, int) and not isinstance(obj, Mapping)):
        items = list(obj) if isinstance(obj, (list, tuple)) else []
        if not isinstance(key, int):
            raise TypeError(f"Cannot use key {key!r} on a list")
        while len(items) <= key:
            items.append(None)
        items[key] = assign_path(items[key], rest, value)
        return items

    data = dict(obj) if isinstance(obj, Mapping) else {}
    data[key] = assign_path(data.get(key, UNDEFINED), rest, value)
    return data


def remove_path(obj: Any, path: Sequence[Union[str, int]]) -> Any:
    """Return a copy of `obj` without the entry at `path` (persistent delete)."""
    if not path:
        return UNDEFINED

    key, rest = path[0], path[1:]
    current = _child(obj, key)
    if current is UNDEFINED:
        return obj

    if isinstance(obj, Mapping):
        data = dict(obj)
        if rest:
            data[key] = remove_path(current, rest)
        else:
            del data[key]
        return data

    if isinstance(obj, (list, tuple)):
        items = list(obj)
        if rest:
            items[key] = remove_path(current, rest)
        else:
            del items[key]
        return items

    return obj


def clone(value: Any) -> Any:
    """Deep-copy plain containers (dict, list, tuple, set).

    Any other object, model instances included, is shared, not copied.
    """
    if isinstance(value, dict):
        return {key: clone(item) for key, item in value.items()}
    if isinstance(value, list):
        return [clone(item) for item in value]
    if isinstance(value, tuple):
        return tuple(clone(item) for item in value)
    if isinstance(value, set):
        return {clone(item) for item in value}
    return value


def flatten(
    data: Any,
    filter: Optional[Callable[[Any, str], bool]] = None,
    prefix: str = '',
) -> Dict[str, Any]:
    """Flatten nested dicts and lists into a single-level dict.

    Keys are dotted for mapping keys and bracketed for list indexes:
    {'a': {'b': 1}, 'items': [{'id': 2}]} -> {'a.b': 1, 'items[0].id': 2}

    Args:
        data: Nested structure to flatten
        filter: Optional predicate (value, path) -> bool; leaves for which it
                returns False are omitted
        prefix: Path of `data` itself (used in recursion)

    Returns:
        Flat mapping of path -> leaf value. Empty containers are kept as leaves.
    """
    output: Dict[str, Any] = {}

    if isinstance(data, Mapping) and data:
        items = [(f'{prefix}.{key}' if prefix else str(key), value) for key, value in data.items()]
    elif isinstance(data, (list, tuple)) and data:
        items = [(f'{prefix}[{index}]', value) for index, value in enumerate(data)]
    else:
        if prefix and (filter is None or filter(data, prefix)):
            output[prefix] = data
        return output

    for path, value in items:
        output.update(flatten(value, filter, path))
    return output


def is_empty(value: Any) -> bool:
    """Whether a value counts as empty for `required` checks."""
    if value is None or value is UNDEFINED:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


def same_value(a: Any, b: Any) -> bool:
    """Identity for objects, equality for immutable scalars of the same type."""
    if a is b:
        return True
    return type(a) is type(b) and isinstance(a, _SCALARS) and a == b
