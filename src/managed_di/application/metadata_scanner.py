"""Application layer - Declarative services metadata scanning."""

import inspect
from abc import ABC, ABCMeta
from typing import Any, Dict, List, Type, get_type_hints

from managed_di.domain import IMetadataScanner, ServiceMeta
from managed_di.domain.annotations import get_meta


def is_protocol(cls: Any) -> bool:
    """Return True for ``typing.Protocol`` classes."""
    return isinstance(cls, type) and bool(getattr(cls, "_is_protocol", False))


def is_interface(cls: Any) -> bool:
    """Return True for protocols and abstract base classes.

    Concrete classes built on ``ABCMeta`` are not interfaces.
    """
    if is_protocol(cls):
        return True
    return isinstance(cls, ABCMeta) and (inspect.isabstract(cls) or ABC in cls.__bases__)


def safe_type_hints(obj: Any) -> Dict[str, Any]:
    """Return the evaluated type hints of a function or class, or an empty mapping when they cannot be evaluated."""
    try:
        return get_type_hints(obj)
    except (NameError, TypeError, AttributeError):
        return {}


def declared_interfaces(implementation_type: Type) -> List[Type]:
    """Return the interfaces an implementation declares directly, in declaration order."""
    return [base for base in implementation_type.__bases__ if is_interface(base)]


def _fallback(meta: ServiceMeta, defaults: List[ServiceMeta]) -> ServiceMeta:
    changes = {}
    for field_name in ServiceMeta.model_fields:
        if getattr(meta, field_name) is not None:
            continue
        for default in defaults:
            value = getattr(default, field_name)
            if value is not None:
                changes[field_name] = value
                break
    return meta.merge(**changes) if changes else meta


class AnnotationsScanner(IMetadataScanner):
    """Reads metadata recorded by the ``managed_di.domain.annotations`` decorators.

    Metadata is taken from the implementation own namespace. Values the
    implementation leaves unset fall back one level to the interfaces it
    declares; concrete superclasses are never consulted.

    Example:
        >>> scanner = AnnotationsScanner()
        >>> scanner.scan_method(UserService, "save").transactional
        True
    """

    def scan_class(self, implementation_type: Type) -> ServiceMeta:
        meta = get_meta(implementation_type)
        defaults = [get_meta(interface) for interface in declared_interfaces(implementation_type)]
        return _fallback(meta, defaults)

    def scan_method(self, implementation_type: Type, name: str) -> ServiceMeta:
        function = vars(implementation_type).get(name)
        meta = get_meta(function) if function is not None else ServiceMeta()
        defaults = []
        for interface in declared_interfaces(implementation_type):
            declared = inspect.getattr_static(interface, name, None)
            if declared is not None:
                defaults.append(get_meta(declared))
        return _fallback(meta, defaults)
