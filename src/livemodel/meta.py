"""
Field definition records.

A Meta describes one field of a Model: how its default is produced, whether
it is computed, what type it must satisfy, how it is validated, transformed
on read/write/export, and which access flags apply. Metas are frozen once
built and are interpreted by Schema.

Every hook receives the owning model as its first argument:

    class Person(Model):
        name = Meta(default='', type=str, required=lambda m: m.age > 0)
        age = Meta(default=0, type=int)

This module also holds the view capability table (VIEW_ATTRIBUTES), the
fixed list of attributes every FieldView exposes besides its mandatory
value/data/text/errors/state/changed properties.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Tuple


class _Undefined:
    """Sentinel for "no value", distinct from None."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return 'UNDEFINED'

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self

    def __reduce__(self):
        return (_Undefined, ())


UNDEFINED = _Undefined()


@dataclass(frozen=True)
class Validator:
    """One entry of Meta.validators.

    Attributes:
        validate: (model, value, key) -> True when the value passes. Any other
                  result fails; an Exception result supplies the message.
        determine: bool or (model, value, key) -> bool; falsy skips this validator.
        message: str or (model, value, key, result) -> str.
        catch: (model, error) -> value overriding the fallback when a hook of
               this validator raises.
        needs_parent: The validator reads the model's parent.
    """
    validate: Callable[..., Any]
    determine: Any = None
    message: Any = None
    catch: Optional[Callable[..., Any]] = None
    needs_parent: bool = False

    @classmethod
    def coerce(cls, value: Any) -> 'Validator':
        """Build a Validator from a Validator, a mapping, or a bare callable."""
        if isinstance(value, Validator):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        if callable(value):
            return cls(validate=value)
        raise TypeError(f"Cannot build a Validator from {value!r}")


@dataclass(frozen=True, eq=False)
class Meta:
    """Immutable definition of one field.

    All attributes are optional. `default` and `extra` use UNDEFINED / an empty
    mapping for "not given" so that None stays a legal default.
    """
    default: Any = UNDEFINED
    compute: Optional[Callable[[Any], Any]] = None
    type: Any = None
    validators: Tuple[Validator, ...] = ()
    create: Optional[Callable[[Any, Mapping], Any]] = None
    drop: Any = None
    map: Optional[Callable[..., Any]] = None
    flat: Optional[Callable[..., Mapping]] = None
    record: Optional[Callable[..., Mapping]] = None
    getter: Optional[Callable[[Any, Any], Any]] = None
    setter: Optional[Callable[[Any, Any], Any]] = None
    formatter: Optional[Callable[[Any, Any], Any]] = None
    required: Any = False
    disabled: Any = False
    readonly: Any = False
    hidden: Any = False
    watch: Optional[Callable[[Any, Any], None]] = None
    catch: Optional[Callable[[Any, BaseException], Any]] = None
    state: Optional[Callable[[], Mapping[str, Any]]] = None
    needs_parent: bool = False
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, 'validators', tuple(Validator.coerce(v) for v in self.validators or ()))
        object.__setattr__(self, 'extra', MappingProxyType(dict(self.extra)))

    @property
    def is_computed(self) -> bool:
        return self.compute is not None

    @classmethod
    def coerce(cls, value: Any) -> 'Meta':
        """Build a Meta from a Meta or a mapping.

        Mapping keys that are not Meta attributes are kept in `extra` and
        exposed on the field's view.
        """
        if isinstance(value, Meta):
            return value
        if isinstance(value, Mapping):
            known = {f.name for f in fields(cls)}
            kwargs = {key: item for key, item in value.items() if key in known}
            extra = {key: item for key, item in value.items() if key not in known}
            if extra:
                kwargs['extra'] = {**dict(kwargs.get('extra', {})), **extra}
            return cls(**kwargs)
        raise TypeError(f"Cannot build a field definition from {value!r}")

    def declared_state(self) -> Mapping[str, Any]:
        """Evaluate the `state` thunk (empty mapping when absent)."""
        return dict(self.state()) if callable(self.state) else {}


# ========== VIEW CAPABILITY TABLE ==========

class Evaluation(Enum):
    """How a view attribute is evaluated from its Meta entry."""
    FLAG = "flag"    # bool or predicate(model), coerced to bool
    VALUE = "value"  # plain value, callables are invoked with the model


@dataclass(frozen=True)
class ViewAttribute:
    """One row of the capability table.

    Attributes:
        name: Meta attribute (or `extra` key) read for the field
        fallback: Returned when the field does not define it or its hook fails
        evaluation: Evaluation rule
    """
    name: str
    fallback: Any
    evaluation: Evaluation


VIEW_ATTRIBUTES: Tuple[ViewAttribute, ...] = (
    ViewAttribute('required', False, Evaluation.FLAG),
    ViewAttribute('disabled', False, Evaluation.FLAG),
    ViewAttribute('readonly', False, Evaluation.FLAG),
    ViewAttribute('hidden', False, Evaluation.FLAG),
)
