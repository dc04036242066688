"""
Declarative, schema-driven reactive models.

livemodel turns field-by-field definitions (defaults, types, computed values,
validators, getters/setters, access flags) into live Model instances whose
fields are validated, derivable, observable and composable into parent/child
trees.

Quick Start:
    >>> from livemodel import Model, Meta
    >>>
    >>> class Person(Model):
    ...     name = Meta(default='', type=str, required=lambda m: m.age > 0)
    ...     age = Meta(default=0, type=int)
    >>>
    >>> person = Person()
    >>> person.views.name.required
    False
    >>> person.age = 5
    >>> person.views.name.required
    True

Architecture:
    Model.set -> Schema gates (disabled/readonly/compute) -> Schema.set (setter)
    -> Store.set (commit) -> dispatch to watchers -> dispatch to ancestor stores

    Model.get -> Store.get (raw) -> Schema.get (compute/getter) -> sub-path projection

Modules:
    - meta: Field definition records (Meta, Validator) and the view capability table
    - schema: Interpretation of field definitions with error containment
    - store: Raw state container with watchers
    - model: Reactive instance, lifecycle and tree composition
    - views: Per-field projections and aggregates
    - async_ref: Fetch-backed state cell
    - ty: Structural type checking of field values
    - paths: Key paths and persistent nested updates
    - errors: Error records reported instead of raised
    - config: Framework configuration
"""

from livemodel.async_ref import AsyncRef, CellState
from livemodel.config import (
    ModelConfig,
    get_model_config,
    model_config_context,
    reset_model_config,
    set_model_config,
)
from livemodel.errors import ErrorKind, FieldError
from livemodel.meta import (
    UNDEFINED,
    VIEW_ATTRIBUTES,
    Evaluation,
    Meta,
    Validator,
    ViewAttribute,
)
from livemodel.model import Model, ModelStore, as_meta
from livemodel.paths import flatten, format_key_path, make_key_path
from livemodel.schema import Schema
from livemodel.store import Computed, Store, WatchEvent
from livemodel.ty import IfExists, OneOf, Rule, TypeMismatch, check
from livemodel.views import FieldView, StateProxy, Views

__version__ = "0.1.0"

__all__ = [
    # Core
    'Model',
    'Meta',
    'Validator',
    'Schema',
    'Store',
    'ModelStore',
    'as_meta',
    'Computed',
    'WatchEvent',
    'UNDEFINED',

    # Views
    'FieldView',
    'Views',
    'StateProxy',
    'VIEW_ATTRIBUTES',
    'ViewAttribute',
    'Evaluation',

    # Errors
    'ErrorKind',
    'FieldError',

    # Config
    'ModelConfig',
    'get_model_config',
    'set_model_config',
    'reset_model_config',
    'model_config_context',

    # Types
    'check',
    'TypeMismatch',
    'Rule',
    'IfExists',
    'OneOf',

    # Async
    'AsyncRef',
    'CellState',

    # Paths
    'make_key_path',
    'format_key_path',
    'flatten',
]
