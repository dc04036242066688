"""
Derived per-field projections of a Model.

Each field gets one FieldView, built once when the model initializes.
Every attribute is recomputed from Schema and Store on access except
`changed`, which is set by Model.set() and cleared by restore().

Views groups the field views of one model and adds tree-wide aggregates:

    model.views.name.required      # capability table attribute
    model.views['name'].text       # formatter applied to the raw stored value
    model.views.all_errors         # every field's validation errors
    model.views.changed = False    # reset every field's changed flag
    model.views.state.loading      # top-level declared state
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, Iterable, Iterator, List, Tuple

from livemodel.config import get_model_config
from livemodel.errors import FieldError

if TYPE_CHECKING:
    from livemodel.model import Model

logger = logging.getLogger(__name__)


class StateProxy:
    """Read/write access restricted to a fixed set of state keys.

    Reads and writes go through the owning model, so they follow the same
    pipeline (and dispatch) as any other model key.
    """

    __slots__ = ('_model', '_keys')

    def __init__(self, model: 'Model', keys: Iterable[str]):
        object.__setattr__(self, '_model', model)
        object.__setattr__(self, '_keys', tuple(keys))

    def _require(self, key: str) -> None:
        if key not in self._keys:
            raise KeyError(f"{key!r} is not a declared state key (declared: {', '.join(self._keys) or 'none'})")

    def __getitem__(self, key: str) -> Any:
        self._require(key)
        return self._model.get(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self._require(key)
        self._model.set(key, value)

    def __delitem__(self, key: str) -> None:
        self._require(key)
        self._model.delete(key)

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError as e:
            raise AttributeError(str(e)) from None

    def __setattr__(self, name: str, value: Any) -> None:
        try:
            self[name] = value
        except KeyError as e:
            raise AttributeError(str(e)) from None

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def keys(self) -> Tuple[str, ...]:
        return self._keys

    def to_dict(self) -> Dict[str, Any]:
        return {key: self._model.get(key) for key in self._keys}

    def __repr__(self) -> str:
        return f"StateProxy({self.to_dict()!r})"


class FieldView:
    """Read/write projection of one field.

    Capability attributes (required, disabled, readonly, hidden and any entry
    added to the model's `view_attributes`) and custom `extra` attributes of
    the field definition are resolved dynamically through the Schema.
    """

    def __init__(self, model: 'Model', key: str):
        self._model = model
        self._key = key
        self._capabilities = {attr.name: attr for attr in model.view_attributes}
        meta = model.schema[key]
        self._state_keys: Tuple[str, ...] = tuple(meta.declared_state().keys())
        self.changed: bool = False

    @property
    def key(self) -> str:
        return self._key

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)

        capability = self._capabilities.get(name)
        if capability is not None:
            return self._model.schema.invoke(
                self._key, name, self._model, capability.fallback, capability.evaluation
            )

        meta = self._model.schema[self._key]
        if name in meta.extra:
            return self._model.schema.invoke(self._key, name, self._model)

        raise AttributeError(f"View of {self._key!r} has no attribute {name!r}")

    @property
    def value(self) -> Any:
        return self._model.get(self._key)

    @value.setter
    def value(self, value: Any) -> None:
        self._model.set(self._key, value)

    @property
    def data(self) -> Any:
        """Raw stored value (before getter)."""
        return self._model.store.get(self._key)

    @property
    def errors(self) -> List[FieldError]:
        return self._model.schema.validate_safe(self._key, self._model.store.get(self._key), self._model)

    @property
    def text(self) -> str:
        value = self._model.schema.format(self._key, self.data, self._model)
        if value is None:
            return get_model_config().text_none
        return str(value)

    @property
    def state(self) -> StateProxy:
        return StateProxy(self._model, self._state_keys)

    def __repr__(self) -> str:
        return f"FieldView({self._key!r}, value={self.value!r}, changed={self.changed})"


class Views:
    """All field views of one model plus aggregates."""

    def __init__(self, model: 'Model', keys: Iterable[str]):
        self._model = model
        self._views: Dict[str, FieldView] = {key: FieldView(model, key) for key in keys}

    def __getitem__(self, key: str) -> FieldView:
        return self._views[key]

    def __getattr__(self, name: str) -> FieldView:
        if name.startswith('_'):
            raise AttributeError(name)
        try:
            return self._views[name]
        except KeyError:
            raise AttributeError(f"No field named {name!r}") from None

    def __contains__(self, key: object) -> bool:
        return key in self._views

    def __iter__(self) -> Iterator[FieldView]:
        return iter(self._views.values())

    def __len__(self) -> int:
        return len(self._views)

    def keys(self) -> List[str]:
        return list(self._views.keys())

    @property
    def all_errors(self) -> List[FieldError]:
        """Concatenated errors of every field, in field order."""
        errors: List[FieldError] = []
        for view in self._views.values():
            errors.extend(view.errors)
        return errors

    @property
    def changed(self) -> bool:
        """Whether any field changed since the last restore."""
        return any(view.changed for view in self._views.values())

    @changed.setter
    def changed(self, value: bool) -> None:
        for view in self._views.values():
            view.changed = bool(value)

    @property
    def state(self) -> StateProxy:
        """Direct accessors for every key of the model's state()."""
        return StateProxy(self._model, self._model.state_keys)

    def __repr__(self) -> str:
        return f"Views({', '.join(self._views)})"
