"""
Model: reactive instance wiring one Schema to one Store.

Fields are declared as class attributes and collected (across the MRO) when
the subclass is created:

    class Address(Model):
        city = Meta(default='', type=str, required=True)

    class Person(Model):
        name = Meta(default='', type=str, required=lambda m: m.age > 0)
        age = Meta(default=0, type=int)
        address = Address            # one child model
        friends = [Address]          # list of child models

    person = Person({'name': 'Ada', 'age': 36})
    person.age = 37                  # gates -> setter -> store -> watchers
    person.views.name.required       # True
    person.to_data()                 # {'name': 'Ada', 'age': 37, 'address': {...}, 'friends': []}

Lifecycle:
    construct -> build Schema -> build ModelStore -> init(data) -> on_init()
    on_init() may return a coroutine; `await model.ready` waits for it.

Tree composition:
    Child models hold a weak reference to their parent plus the key path
    they are attached at. Every change committed in a child's store is
    re-dispatched to the parent's store under the extended key path, so an
    ancestor's watchers see ('address', 'city') when the child's city changes.

Re-entrancy:
    Mutation is synchronous and cycles are not detected. A compute, getter,
    validator or watch hook that writes to the same field (or to an ancestor
    field that feeds back into it) recurses without bound. Avoiding such
    cycles is the caller's obligation.
"""

import asyncio
import inspect
import logging
import weakref
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from starlette.datastructures import FormData

from livemodel.async_ref import AsyncRef
from livemodel.config import get_model_config
from livemodel.errors import ErrorKind, FieldError
from livemodel.meta import UNDEFINED, VIEW_ATTRIBUTES, Meta, Validator, ViewAttribute
from livemodel.paths import KeyPath, assign_path, clone, flatten, format_key_path, make_key_path, read_path, same_value
from livemodel.schema import EXPORT, RECORD, Schema
from livemodel.store import WILDCARD, Computed, Store, WatchEvent, WatchHandler
from livemodel.views import Views

logger = logging.getLogger(__name__)


# ========== MODEL-TYPED FIELDS ==========

def _is_model_class(value: Any) -> bool:
    return isinstance(value, type) and issubclass(value, Model)


def _is_model_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) == 1 and _is_model_class(value[0])


def _is_field_declaration(value: Any) -> bool:
    return isinstance(value, Meta) or _is_model_class(value) or _is_model_list(value)


def _coerce_child(cls: type, value: Any) -> Optional['Model']:
    """Reuse an instance of cls, build one from a mapping, else None."""
    if isinstance(value, cls):
        return value
    if isinstance(value, Mapping):
        return cls(value)
    return None


def _child_failure(errors: List[FieldError]) -> Any:
    if not errors:
        return True
    return ValueError('; '.join(str(error) for error in errors))


def _child_meta(key: str, cls: type) -> Meta:
    """Field definition for a single child model of class cls."""

    def create(model, data):
        return _coerce_child(cls, data.get(key, UNDEFINED))

    def setter(model, value):
        child = _coerce_child(cls, value)
        return value if child is None else child

    def validate(model, value, key):
        return _child_failure(value.validate() if isinstance(value, Model) else [])

    def record(model, value, key, data):
        return {key: value.to_json() if isinstance(value, Model) else value}

    def export(model, value, key, data):
        return value.to_data() if isinstance(value, Model) else value

    return Meta(
        default=cls,
        type=cls,
        validators=(Validator(validate),),
        create=create,
        setter=setter,
        record=record,
        map=export,
    )


def _child_list_meta(key: str, cls: type) -> Meta:
    """Field definition for a homogeneous list of child models."""

    def coerce_items(value):
        if not isinstance(value, (list, tuple)):
            return None
        children = (_coerce_child(cls, item) for item in value)
        return [child for child in children if child is not None]

    def create(model, data):
        return coerce_items(data.get(key, UNDEFINED))

    def setter(model, value):
        items = coerce_items(value)
        return value if items is None else items

    def validate(model, value, key):
        errors: List[FieldError] = []
        for item in value or []:
            if isinstance(item, Model):
                errors.extend(item.validate())
        return _child_failure(errors)

    def record(model, value, key, data):
        return {key: [item.to_json() if isinstance(item, Model) else item for item in value or []]}

    def export(model, value, key, data):
        return [item.to_data() if isinstance(item, Model) else item for item in value or []]

    return Meta(
        default=list,
        type=[cls],
        validators=(Validator(validate),),
        create=create,
        setter=setter,
        record=record,
        map=export,
    )


def as_meta(key: str, declaration: Any) -> Meta:
    """Turn any field declaration into a Meta.

    Accepts a Meta, a mapping of Meta attributes, a Model subclass (one
    child) or a one-element list holding a Model subclass (list of children).
    """
    if isinstance(declaration, Meta):
        return declaration
    if _is_model_class(declaration):
        return _child_meta(key, declaration)
    if _is_model_list(declaration):
        return _child_list_meta(key, declaration[0])
    return Meta.coerce(declaration)


# ========== STORE + READY ==========

class ModelStore(Store):
    """Store whose dispatch also reaches the owning model's ancestors."""

    def __init__(self, model: 'Model', on_error: Optional[Callable[[KeyPath, BaseException], None]] = None):
        super().__init__(on_error=on_error)
        self._model_ref = weakref.ref(model)

    def dispatch(self, key_path: Any, next: Any, prev: Any, force: bool = False) -> int:
        path = make_key_path(key_path)
        notified = super().dispatch(path, next, prev, force)

        model = self._model_ref()
        parent = model.parent if model is not None else None
        if parent is None:
            return notified
        if not force and same_value(next, prev):
            return notified
        # ancestors must not dedupe against their own view of the nested path
        return notified + parent.store.dispatch(model.key_path + path, next, prev, True)


class ReadyState:
    """Awaitable over the result of Model.on_init().

    A coroutine returned by on_init() is scheduled right away when an event
    loop is running, otherwise on first await. Awaiting yields the model.
    """

    def __init__(self, model: 'Model', result: Any):
        self._model = model
        self._result = result
        self._task: Optional[asyncio.Future] = None
        if inspect.isawaitable(result):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                return
            self._task = asyncio.ensure_future(self._wait())

    async def _wait(self) -> 'Model':
        if inspect.isawaitable(self._result):
            await self._result
        return self._model

    @property
    def done(self) -> bool:
        if self._task is None:
            return not inspect.isawaitable(self._result)
        return self._task.done()

    def __await__(self):
        if self._task is None:
            self._task = asyncio.ensure_future(self._wait())
        return self._task.__await__()


# ========== MODEL ==========

class Model:
    """Declarative reactive object.

    Subclass and declare fields as class attributes (Meta, a Model subclass,
    or [ModelSubclass]); override fields() to supply them per instance
    instead. Field values are read and written as attributes or through
    get()/set(). Attributes starting with '_' are instance bookkeeping and
    never reach the store.

    Overridable hooks: on_init, on_switch, on_parse, on_record, on_export,
    on_check, on_error, on_ensure.

    Thread safety: Not thread-safe (one logical mutation at a time).
    """

    view_attributes: Tuple[ViewAttribute, ...] = VIEW_ATTRIBUTES

    _declared_fields: Dict[str, Any] = {}
    __fields__: Dict[str, Any] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        declared: Dict[str, Any] = {}
        for name, value in list(cls.__dict__.items()):
            if not _is_field_declaration(value):
                continue
            if name.startswith('_') or hasattr(Model, name):
                raise TypeError(f"{cls.__name__}.{name}: field name collides with a Model attribute")
            declared[name] = value
            delattr(cls, name)
        cls._declared_fields = declared

        merged: Dict[str, Any] = {}
        for base in reversed(cls.__mro__):
            merged.update(base.__dict__.get('_declared_fields', {}))
        cls.__fields__ = merged

    def __init__(self, data: Optional[Mapping[str, Any]] = None,
                 parent: Optional['Model'] = None, key_path: Any = ()):
        """
        Args:
            data: Input passed to from_json()
            parent: Optional parent to attach to before init
            key_path: Attachment path under the parent
        """
        self._parent_ref: Optional[weakref.ref] = None
        self._key_path: KeyPath = ()
        self._views = None
        self._refs: Dict[str, Tuple[AsyncRef, Callable]] = {}
        self._state_keys: Tuple[str, ...] = ()
        self._schema = Schema(
            {key: as_meta(key, declaration) for key, declaration in self.fields().items()},
            on_error=self._report,
        )
        self._store = ModelStore(self, on_error=self._report_watcher)
        if parent is not None:
            self.set_parent(parent, key_path)
        self.init(data or {})
        self._ready = ReadyState(self, self.on_init())

    # ========== ATTRIBUTE ROUTING ==========

    def __getattr__(self, name: str) -> Any:
        if name.startswith('_'):
            raise AttributeError(name)
        schema = self.__dict__.get('_schema')
        store = self.__dict__.get('_store')
        if schema is not None and (name in schema or (store is not None and store.has(name))):
            return self.get(name)
        raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith('_') or '_schema' not in self.__dict__:
            object.__setattr__(self, name, value)
        elif name in self._schema or not hasattr(type(self), name):
            self.set(name, value)
        else:
            object.__setattr__(self, name, value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._store.data!r})"

    # ========== PROPERTIES ==========

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def store(self) -> ModelStore:
        return self._store

    @property
    def views(self) -> Views:
        return self._views

    @property
    def parent(self) -> Optional['Model']:
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def key_path(self) -> KeyPath:
        return self._key_path

    @property
    def ready(self) -> ReadyState:
        return self._ready

    @property
    def editable(self) -> bool:
        return self._store.editable

    @property
    def state_keys(self) -> Tuple[str, ...]:
        return self._state_keys

    # ========== OVERRIDABLE HOOKS ==========

    def fields(self) -> Mapping[str, Any]:
        """Field declarations of this instance (class attributes by default)."""
        return type(self).__fields__

    def state(self) -> Dict[str, Any]:
        """Declared state keys and their initial values.

        Collects the `state` thunks of every field; override to add
        model-level state (plain values or AsyncRef cells).
        """
        output: Dict[str, Any] = {}
        for _, meta in self._schema.items():
            output.update(meta.declared_state())
        return output

    def on_init(self) -> Any:
        """Called once after construction; may return a coroutine."""
        return None

    def on_switch(self, params: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        """Called by restore() before the store is replaced; may return new params."""
        return None

    def on_parse(self, json: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        """Called by from_json() on the raw input; may return replacement input."""
        return None

    def on_record(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Post-process to_json() output."""
        return None

    def on_export(self, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Post-process to_data() output."""
        return None

    def on_check(self) -> List[FieldError]:
        """Model-level validation run by validate() before the field checks."""
        return []

    def on_error(self, error: FieldError) -> Optional[FieldError]:
        """Receive every reported error; may return a replacement record."""
        if get_model_config().log_errors:
            logger.warning(f"{type(self).__name__}: {error}")
        return None

    def on_ensure(self, parent: 'Model') -> None:
        """Called after this model is attached to a parent."""
        return None

    # ========== ERROR REPORTING ==========

    def _report(self, error: FieldError) -> FieldError:
        try:
            replacement = self.on_error(error)
        except Exception as e:
            logger.warning(f"Error in on_error of {type(self).__name__}: {e}")
            replacement = None
        return replacement or error

    def _report_watcher(self, path: KeyPath, error: BaseException) -> None:
        key = format_key_path(path)
        self._report(FieldError(
            kind=ErrorKind.HOOK_FAILED,
            key=key,
            option='watch',
            error=error,
            message=f"{key}: watch raised {type(error).__name__}: {error}",
        ))

    def _check(self, keys: Optional[Iterable[str]] = None, action: str = 'validate') -> None:
        """Report fields that need a parent while this model has none."""
        if self.parent is not None:
            return
        for key in keys if keys is not None else self._schema.keys():
            meta = self._schema.meta(key)
            if meta is None:
                continue
            if meta.needs_parent or any(v.needs_parent for v in meta.validators):
                self._report(FieldError(
                    kind=ErrorKind.STRUCTURAL_MISUSE,
                    key=key,
                    action=action,
                    option='needs_parent',
                    message=f"{key} depends on a parent model, but {type(self).__name__} has none.",
                ))

    # ========== LIFECYCLE ==========

    def init(self, data: Mapping[str, Any]) -> None:
        """Build views, register field watchers and load `data`."""
        self._views = Views(self, self._schema.keys())
        for key, meta in self._schema.items():
            if meta.watch is not None:
                self._store.watch((key,), partial(self._call_field_watch, meta.watch), deep=True)
        self._store.watch((WILDCARD,), self._adopt_children, deep=True)
        self.from_json(data)

    def _call_field_watch(self, fn: Callable[[Any, WatchEvent], None], event: WatchEvent) -> None:
        fn(self, event)

    def _adopt_children(self, event: WatchEvent) -> None:
        if len(event.key_path) != 1:
            return
        key = event.key_path[0]
        self._adopt(key, event.value)
        self._release(key, event.prev, event.value)

    def _adopt(self, key: Union[str, int], value: Any) -> None:
        # set_parent reports a child that another live model already holds
        if isinstance(value, Model):
            value.set_parent(self, (key,))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, Model):
                    item.set_parent(self, (key, index))

    def _release(self, key: Union[str, int], prev: Any, value: Any) -> None:
        """Detach the children held at `key` in prev that value no longer holds."""
        kept = value if isinstance(value, list) else [value]
        for old in prev if isinstance(prev, list) else [prev]:
            if not isinstance(old, Model) or old.parent is not self:
                continue
            if old.key_path[:1] != (key,) or any(old is item for item in kept):
                continue
            old.set_parent(None)
            logger.debug(f"{type(old).__name__} detached from {type(self).__name__} at {key!r}")

    def set_parent(self, parent: Optional['Model'], key_path: Any = ()) -> bool:
        """Attach to (or, with None, detach from) a parent model.

        Re-attaching to the same parent only updates the key path. Attaching
        while another live parent holds this model is refused and reported.

        Returns:
            True if the model is now attached as requested.
        """
        path = make_key_path(key_path)
        current = self.parent

        if parent is None:
            self._parent_ref = None
            self._key_path = ()
            return True

        if current is parent:
            self._key_path = path
            return True

        if current is not None:
            self._report(FieldError(
                kind=ErrorKind.STRUCTURAL_MISUSE,
                key=format_key_path(path) or None,
                action='set_parent',
                message=f"{type(self).__name__} is already attached to {type(current).__name__}.",
            ))
            return False

        self._parent_ref = weakref.ref(parent)
        self._key_path = path
        logger.debug(f"{type(self).__name__} attached to {type(parent).__name__} at {format_key_path(path)!r}")
        try:
            self.on_ensure(parent)
        except Exception as e:
            self._report(FieldError(
                kind=ErrorKind.HOOK_FAILED,
                key=format_key_path(path) or None,
                option='on_ensure',
                error=e,
                message=f"on_ensure raised {type(e).__name__}: {e}",
            ))
        return True

    # ========== READ / WRITE ==========

    def get(self, key_path: Any) -> Any:
        """Read a field (compute/getter applied), then project into sub-paths."""
        path = make_key_path(key_path)
        if not path:
            return None
        key, rest = path[0], path[1:]
        raw = self._store.get((key,))
        if key in self._schema and not self._store.is_computed(key):
            value = self._schema.get(key, raw, self)
        else:
            value = raw
        return read_path(value, rest, None) if rest else value

    def set(self, key_path: Any, next: Any, force: bool = False) -> Any:
        """Write a field through the schema gates and setter.

        Args:
            key_path: Field name or nested path ('profile.tags[0]')
            next: New value
            force: Bypass disabled/readonly (computed fields still refuse)

        Returns:
            The committed value, or the current value when the write was
            rejected or the model is locked.
        """
        path = make_key_path(key_path)
        if not self._store.editable or not path:
            return self.get(path)

        key, rest = path[0], path[1:]
        if key not in self._schema:
            if rest:
                return self._store.set(path, next)
            return self.define(key, next)

        prev = self._store.get((key,))

        # nested models own their fields
        node = prev
        for index in range(len(rest)):
            if isinstance(node, Model):
                return node.set(rest[index:], next, force)
            node = read_path(node, rest[index:index + 1])

        self._check([key], action='set')

        if rest:
            next = assign_path(prev, rest, next)

        value, accepted = self._schema.write(key, next, prev, self, force=force)
        if not accepted:
            return self.get(path)

        self._store.set((key,), value)
        self._views[key].changed = True
        return read_path(value, rest) if rest else value

    def update(self, data: Mapping[str, Any]) -> None:
        """set() every key of data in order."""
        if not self._store.editable:
            return
        for key, value in data.items():
            self.set(key, value)

    def define(self, key: str, value: Any) -> Any:
        """Add an ad hoc store key.

        A callable becomes a computed entry evaluated as value(model) on every
        read; anything else is stored as is.
        """
        if not self._store.editable:
            return self.get(key)
        if callable(value) and not isinstance(value, (type, Model)):
            self._store.define(key, Computed(partial(value, self)))
        else:
            if self._store.is_computed(key):
                self._store.delete(key)
            self._store.set((key,), value)
        return self.get(key)

    def delete(self, key: Any) -> None:
        if self._store.editable:
            self._store.delete(key)

    def watch(self, key_path: Any, handler: WatchHandler) -> None:
        """Call handler(event) for changes at or below key_path (also from child models)."""
        self._store.watch(key_path, handler, deep=True)

    def unwatch(self, key_path: Any, handler: Optional[WatchHandler] = None) -> None:
        self._store.unwatch(key_path, handler)

    def lock(self) -> None:
        """Make every mutation entry point a no-op."""
        self._store.editable = False

    def unlock(self) -> None:
        self._store.editable = True

    def ref(self, key: str) -> AsyncRef:
        """The AsyncRef bound to state key `key`."""
        return self._refs[key][0]

    # ========== VALIDATION ==========

    def validate(self, key: Union[None, str, Iterable[str]] = None) -> List[FieldError]:
        """Validate one field, several fields, or (key=None) the whole model.

        The whole-model form runs the structural check, on_check() and then
        every field in declaration order.
        """
        if key is None:
            self._check()
            errors = list(self.on_check() or [])
            for name in self._schema.keys():
                errors.extend(self._schema.validate_safe(name, self._store.get((name,)), self))
            return errors

        if not isinstance(key, str):
            errors = []
            for name in key:
                errors.extend(self.validate(name))
            return errors

        self._check([key], action='validate')
        return self._schema.validate_safe(key, self._store.get((key,)), self)

    # ========== RESTORE / SERIALIZE ==========

    def _bind_ref(self, key: str, ref: AsyncRef) -> Computed:
        def on_resolve(value, prev):
            self._store.dispatch((key,), value, prev)

        ref.subscribe(on_resolve)
        self._refs[key] = (ref, on_resolve)
        return Computed(lambda: ref.value)

    def _release_refs(self) -> None:
        for ref, on_resolve in self._refs.values():
            ref.unsubscribe(on_resolve)
        self._refs = {}

    def restore(self, data: Mapping[str, Any]) -> None:
        """Replace the whole state from `data`.

        Computed fields become live entries, other fields take data[key] or
        their default, declared state keys take data[key] or their declared
        value. Store keys outside that set are dropped unless they start with
        a reserved prefix. Every view's changed flag is reset.
        """
        if not self._store.editable:
            return

        params: Dict[str, Any] = {}
        for key, meta in self._schema.items():
            if meta.compute is not None:
                params[key] = Computed(partial(self._schema.get, key, None, self))
            elif key in data:
                params[key] = data[key]
            else:
                params[key] = self._schema.default(key)

        self._release_refs()
        state = self.state()
        self._state_keys = tuple(state.keys())
        for key, value in state.items():
            if key in params:
                continue
            value = data.get(key, value)
            params[key] = self._bind_ref(key, value) if isinstance(value, AsyncRef) else value

        prefixes = get_model_config().reserved_prefixes
        for key in self._store.keys():
            if key not in params and isinstance(key, str) and key.startswith(prefixes):
                params[key] = self._store.entry(key)

        switched = self.on_switch(params)
        if switched is not None:
            params = dict(switched)

        # per-key dispatch adopts new children and releases dropped ones
        self._store.init(params)
        self._views.changed = False
        logger.debug(f"{type(self).__name__} restored ({len(params)} keys)")

    def from_json(self, json: Optional[Mapping[str, Any]]) -> 'Model':
        """Load input data: on_parse, create hooks and defaults, then restore()."""
        json = dict(json or {})
        parsed = self.on_parse(json)
        if parsed is not None:
            json = dict(parsed)
        derived = self._schema.restore(json, self)
        self.restore({**json, **derived})
        return self

    def to_json(self) -> Dict[str, Any]:
        """Serialize for storage; the output feeds back into from_json()."""
        self._check(action='to_json')
        data = clone(self._store.data)
        output = self._schema.formulate(data, self, RECORD)
        recorded = self.on_record(output)
        return output if recorded is None else recorded

    def to_data(self) -> Dict[str, Any]:
        """Export for transport (drop/map/flat applied)."""
        self._check(action='to_data')
        data = clone(self._store.data)
        output = self._schema.formulate(data, self, EXPORT)
        exported = self.on_export(output)
        return output if exported is None else exported

    def to_params(self, filter: Optional[Callable[[Any, str], bool]] = None) -> Dict[str, Any]:
        """to_data() flattened to 'a.b' / 'items[0].id' keys."""
        return flatten(self.to_data(), filter)

    def to_form_data(self, filter: Optional[Callable[[Any, str], bool]] = None) -> FormData:
        """to_params() as a form payload with string values."""
        return FormData([(key, _form_value(value)) for key, value in self.to_params(filter).items()])

    # ========== DERIVED CLASSES ==========

    @classmethod
    def extend(cls, fields: Optional[Mapping[str, Any]] = None,
               methods: Optional[Mapping[str, Any]] = None) -> type:
        """Subclass with added or overridden fields and methods."""
        namespace: Dict[str, Any] = {'__module__': cls.__module__}
        for key, declaration in (fields or {}).items():
            namespace[key] = declaration if _is_field_declaration(declaration) else Meta.coerce(declaration)
        namespace.update(methods or {})
        return type(cls.__name__, (cls,), namespace)

    @classmethod
    def extract(cls, fields: Iterable[str] = (), methods: Iterable[str] = ()) -> type:
        """New Model class with only the named fields and methods of this one."""
        namespace: Dict[str, Any] = {key: cls.__fields__[key] for key in fields}
        namespace['__module__'] = cls.__module__
        for name in methods:
            namespace[name] = inspect.getattr_static(cls, name)
        return type(cls.__name__, (Model,), namespace)


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if value is None or value is UNDEFINED:
        return ''
    return str(value)
