"""Field access for typed entities.

Entities are read through a ``FieldAccessor`` so the pipeline never inspects
objects directly. Field lists and getters are computed once per type.
"""

import dataclasses
import threading
import typing
from abc import ABC, abstractmethod
from operator import attrgetter
from typing import Any, Callable, Dict, List, Optional


class FieldAccessor(ABC):
    """Reads and writes named fields of entity objects."""

    @abstractmethod
    def field_names(self, entity_type: type) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    def field_types(self, entity_type: type) -> Dict[str, Optional[type]]:
        raise NotImplementedError

    @abstractmethod
    def get(self, entity: Any, name: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, entity: Any, name: str, value: Any) -> None:
        raise NotImplementedError


class AttributeAccessor(FieldAccessor):
    """Accessor for dataclasses, namedtuples and plain attribute objects."""

    def __init__(self):
        self._lock = threading.Lock()
        self._fields: Dict[type, List[str]] = {}
        self._types: Dict[type, Dict[str, Optional[type]]] = {}
        self._getters: Dict[tuple, Callable[[Any], Any]] = {}

    def field_names(self, entity_type: type) -> List[str]:
        fields = self._fields.get(entity_type)
        if fields is None:
            with self._lock:
                fields = self._fields.setdefault(
                    entity_type, _discover_fields(entity_type)
                )
        return fields

    def field_types(self, entity_type: type) -> Dict[str, Optional[type]]:
        types = self._types.get(entity_type)
        if types is None:
            try:
                hints = typing.get_type_hints(entity_type)
            except (NameError, TypeError):
                hints = {}
            types = {
                name: _plain_type(hints.get(name))
                for name in self.field_names(entity_type)
            }
            with self._lock:
                self._types[entity_type] = types
        return types

    def getter(self, entity_type: type, name: str) -> Callable[[Any], Any]:
        key = (entity_type, name)
        fn = self._getters.get(key)
        if fn is None:
            fn = attrgetter(name)
            with self._lock:
                self._getters[key] = fn
        return fn

    def get(self, entity: Any, name: str) -> Any:
        return self.getter(type(entity), name)(entity)

    def set(self, entity: Any, name: str, value: Any) -> None:
        setattr(entity, name, value)


def _discover_fields(entity_type: type) -> List[str]:
    if dataclasses.is_dataclass(entity_type):
        return [f.name for f in dataclasses.fields(entity_type)]
    if isinstance(getattr(entity_type, "_fields", None), tuple):
        return list(entity_type._fields)
    slots = getattr(entity_type, "__slots__", None)
    if slots:
        return [slots] if isinstance(slots, str) else list(slots)
    annotations = getattr(entity_type, "__annotations__", None)
    if annotations:
        return [name for name in annotations if not name.startswith("_")]
    return []


def _instance_fields(entity: Any) -> List[str]:
    """Fields of a plain object that declares none on its class."""
    return [name for name in vars(entity) if not name.startswith("_")]


def _plain_type(hint: Any) -> Optional[type]:
    if hint is None:
        return None
    # Optional[X] -> X
    args = [a for a in typing.get_args(hint) if a is not type(None)]
    if typing.get_origin(hint) is typing.Union and len(args) == 1:
        hint = args[0]
    return hint if isinstance(hint, type) else None


default_accessor = AttributeAccessor()
