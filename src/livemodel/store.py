"""
Store: key-addressable container of raw field state.

A Store holds the raw (not getter-transformed) value of every field of one
model, plus computed entries that are re-evaluated on every read. Mutations
are synchronous: get() always reflects the last committed set(), and every
committed change is dispatched to the registered watchers before set()
returns.

Watcher patterns:
- exact key path: ('age',) or 'profile.name'
- wildcard segments: '*' matches any single segment ('items[*]' is written ('items', '*'))
- deep watchers also receive changes below the watched path and
  replacements of any container above it

Lifecycle: created once per model, bulk-replaced by init() on restore.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from livemodel.meta import UNDEFINED
from livemodel.paths import KeyPath, assign_path, make_key_path, read_path, remove_path, same_value

logger = logging.getLogger(__name__)

WILDCARD = '*'


class Computed:
    """Live getter stored in place of a raw value."""
    __slots__ = ('fn',)

    def __init__(self, fn: Callable[[], Any]):
        self.fn = fn

    def __call__(self) -> Any:
        return self.fn()

    def __repr__(self) -> str:
        return f"Computed({getattr(self.fn, '__name__', self.fn)!r})"


@dataclass(frozen=True)
class WatchEvent:
    """Change notification passed to watchers.

    Attributes:
        key_path: Full path of the change, relative to the store receiving it
                  (ancestor stores see the child's attachment path prepended)
        value: New value at key_path
        prev: Previous value at key_path (UNDEFINED when it did not exist)
    """
    key_path: KeyPath
    value: Any
    prev: Any

    @property
    def key(self) -> Optional[Union[str, int]]:
        """Top-level key of the change."""
        return self.key_path[0] if self.key_path else None


WatchHandler = Callable[[WatchEvent], None]


def _segments_match(pattern: KeyPath, path: KeyPath) -> bool:
    return all(p == WILDCARD or p == k for p, k in zip(pattern, path))


class Store:
    """Raw state container with watchers.

    Thread safety: Not thread-safe (one logical mutation at a time).
    """

    def __init__(self, on_error: Optional[Callable[[KeyPath, BaseException], None]] = None):
        """
        Args:
            on_error: Receives (key_path, exception) when a watcher raises.
                      Defaults to logging a warning.
        """
        self.editable: bool = True
        self._state: Dict[Union[str, int], Any] = {}
        self._computed: Dict[Union[str, int], Computed] = {}
        self._watchers: List[Tuple[KeyPath, WatchHandler, bool]] = []
        self._on_error = on_error

    # ========== READ ==========

    def has(self, key: Union[str, int]) -> bool:
        return key in self._state or key in self._computed

    def keys(self) -> List[Union[str, int]]:
        return list(self._state.keys()) + [k for k in self._computed if k not in self._state]

    def is_computed(self, key: Union[str, int]) -> bool:
        return key in self._computed

    def entry(self, key: Union[str, int]) -> Any:
        """The stored entry for a top-level key: the Computed itself or the raw value."""
        if key in self._computed:
            return self._computed[key]
        return self._state.get(key, UNDEFINED)

    def get(self, key_path: Any, default: Any = None) -> Any:
        """Read the raw value at key_path (computed entries are evaluated)."""
        path = make_key_path(key_path)
        if not path:
            return self.data
        key, rest = path[0], path[1:]
        if key in self._computed:
            value = self._computed[key]()
        elif key in self._state:
            value = self._state[key]
        else:
            return default
        return read_path(value, rest, default) if rest else value

    @property
    def data(self) -> Dict[Union[str, int], Any]:
        """Plain dict of every key's current value."""
        return {key: self.get((key,)) for key in self.keys()}

    # ========== WRITE ==========

    def set(self, key_path: Any, value: Any) -> Any:
        """Commit a value and dispatch the change.

        Nested paths replace the top-level value with a copy that differs only
        along the path. Setting a computed key is refused (computed entries are
        replaced through define()).

        Returns:
            The value now stored at key_path.
        """
        path = make_key_path(key_path)
        if not self.editable:
            return self.get(path)

        key, rest = path[0], path[1:]
        if key in self._computed:
            logger.debug(f"Store.set ignored for computed key {key!r}")
            return self.get(path)

        prev_top = self._state.get(key, UNDEFINED)
        next_top = assign_path(prev_top, rest, value) if rest else value
        prev = read_path(prev_top, rest) if rest else prev_top

        self._state[key] = next_top
        self.dispatch(path, value, prev)
        return value

    def update(self, data: Mapping[Any, Any]) -> None:
        if not self.editable:
            return
        for key, value in data.items():
            self.set(key, value)

    def define(self, key: Union[str, int], fn: Callable[[], Any]) -> Any:
        """Install a computed entry, replacing any raw value under `key`."""
        if not self.editable:
            return self.get((key,))
        self._state.pop(key, None)
        self._computed[key] = fn if isinstance(fn, Computed) else Computed(fn)
        return self._computed[key]()

    def delete(self, key_path: Any) -> None:
        """Remove the entry at key_path and dispatch the removal."""
        path = make_key_path(key_path)
        if not self.editable or not path:
            return

        key, rest = path[0], path[1:]
        if rest:
            if key not in self._state:
                return
            prev = read_path(self._state[key], rest)
            self._state[key] = remove_path(self._state[key], rest)
            self.dispatch(path, UNDEFINED, prev)
            return

        self._computed.pop(key, None)
        if key in self._state:
            prev = self._state.pop(key)
            self.dispatch(path, UNDEFINED, prev)

    def init(self, params: Mapping[Union[str, int], Any]) -> None:
        """Replace the whole state with `params`.

        Computed values in params become computed entries. A change is
        dispatched for every raw key whose value differs from before
        (computed entries are not dispatched).
        """
        if not self.editable:
            return

        prev_state = self._state
        self._state = {}
        self._computed = {}
        for key, value in params.items():
            if isinstance(value, Computed):
                self._computed[key] = value
            else:
                self._state[key] = value

        for key in list(prev_state.keys()) + [k for k in self._state if k not in prev_state]:
            prev = prev_state.get(key, UNDEFINED)
            value = self._state.get(key, UNDEFINED)
            self.dispatch((key,), value, prev)

    # ========== WATCH ==========

    def watch(self, key_path: Any, handler: WatchHandler, deep: bool = False) -> None:
        """Register `handler` for changes matching key_path."""
        self._watchers.append((make_key_path(key_path), handler, deep))

    def unwatch(self, key_path: Any, handler: Optional[WatchHandler] = None) -> None:
        """Remove watchers on key_path (all of them when handler is None)."""
        path = make_key_path(key_path)
        self._watchers = [
            (pattern, fn, deep) for pattern, fn, deep in self._watchers
            if not (pattern == path and (handler is None or fn == handler))
        ]

    def _matches(self, pattern: KeyPath, deep: bool, path: KeyPath) -> bool:
        if len(pattern) == len(path):
            return _segments_match(pattern, path)
        if not deep:
            return False
        # change below the watched path, or replacement of a container above it
        return _segments_match(pattern, path)

    def dispatch(self, key_path: Any, next: Any, prev: Any, force: bool = False) -> int:
        """Notify watchers of a change.

        Args:
            key_path: Path of the change
            next: New value
            prev: Previous value
            force: Notify even when next is the same value as prev

        Returns:
            Number of watchers notified.
        """
        path = make_key_path(key_path)
        if not force and same_value(next, prev):
            return 0

        event = WatchEvent(path, next, prev)
        notified = 0
        for pattern, handler, deep in list(self._watchers):
            if not self._matches(pattern, deep, path):
                continue
            notified += 1
            try:
                handler(event)
            except Exception as e:
                self._report(path, e)
        return notified

    def _report(self, path: KeyPath, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(path, error)
        else:
            logger.warning(f"Error in watcher for {path!r}: {error}")
