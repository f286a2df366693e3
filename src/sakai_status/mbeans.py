"""Management bean registry for sakai-status.

Beans are registered under an ``ObjectName`` (``domain:key=value,...``) and
inspected through the ``Inspectable`` protocol, so nothing that walks the
registry needs to know the concrete shape of a bean.
"""

import fnmatch
import inspect
import threading
from collections.abc import Callable, Iterable
from functools import total_ordering
from typing import Any, Protocol, runtime_checkable

import structlog

from sakai_status.errors import (
    AttributeNotFoundError,
    InstanceNotFoundError,
    MalformedObjectNameError,
)
from sakai_status.models import AttributeInfo, BeanDescriptor, OperationInfo, ParameterInfo

logger = structlog.get_logger(__name__)

DEFAULT_DOMAIN = "DefaultDomain"

_ILLEGAL_KEY_CHARS = set(":,=*?\n")
_ILLEGAL_VALUE_CHARS = set(":,=\n")


@total_ordering
class ObjectName:
    """
    Hierarchical bean identifier.

    The canonical form lists keys in lexical order, so two names built from
    the same properties in a different order are equal and sort together.
    """

    __slots__ = ("_domain", "_properties", "_property_pattern", "_canonical")

    def __init__(self, name: str) -> None:
        domain, sep, props = name.partition(":")
        if not sep:
            raise MalformedObjectNameError(f"Key properties cannot be empty: {name!r}")
        if "\n" in domain or "=" in domain or "," in domain:
            raise MalformedObjectNameError(f"Invalid character in domain: {name!r}")

        properties: dict[str, str] = {}
        property_pattern = False
        if not props:
            raise MalformedObjectNameError(f"Key properties cannot be empty: {name!r}")
        for entry in props.split(","):
            if entry == "*":
                if property_pattern:
                    raise MalformedObjectNameError(f"Repeated wildcard: {name!r}")
                property_pattern = True
                continue
            key, eq, value = entry.partition("=")
            if not eq:
                raise MalformedObjectNameError(f"Missing '=' in {entry!r}")
            if not key or _ILLEGAL_KEY_CHARS & set(key):
                raise MalformedObjectNameError(f"Invalid key {key!r}")
            if not value or _ILLEGAL_VALUE_CHARS & set(value):
                raise MalformedObjectNameError(f"Invalid value for key {key!r}")
            if key in properties:
                raise MalformedObjectNameError(f"Key {key!r} already defined")
            properties[key] = value

        self._domain = domain
        self._properties = properties
        self._property_pattern = property_pattern

        canonical = ",".join(f"{k}={properties[k]}" for k in sorted(properties))
        if property_pattern:
            canonical = f"{canonical},*" if canonical else "*"
        self._canonical = f"{domain}:{canonical}"

    @property
    def domain(self) -> str:
        return self._domain

    @property
    def properties(self) -> dict[str, str]:
        return dict(self._properties)

    @property
    def canonical_name(self) -> str:
        return self._canonical

    def get(self, key: str) -> str | None:
        """Return the value of one key property."""
        return self._properties.get(key)

    @property
    def is_pattern(self) -> bool:
        """True if this name can match more than one bean."""
        return (
            self._property_pattern
            or _has_wildcard(self._domain)
            or any(_has_wildcard(v) for v in self._properties.values())
        )

    def matches(self, name: "ObjectName") -> bool:
        """Check whether a concrete name is selected by this (pattern) name."""
        if not fnmatch.fnmatchcase(name.domain, self._domain or DEFAULT_DOMAIN):
            return False
        candidate = name._properties
        for key, value in self._properties.items():
            actual = candidate.get(key)
            if actual is None or not fnmatch.fnmatchcase(actual, value):
                return False
        if not self._property_pattern and candidate.keys() != self._properties.keys():
            return False
        return True

    def __str__(self) -> str:
        return self._canonical

    def __repr__(self) -> str:
        return f"ObjectName({self._canonical!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ObjectName):
            return NotImplemented
        return self._canonical == other._canonical

    def __lt__(self, other: "ObjectName") -> bool:
        if not isinstance(other, ObjectName):
            return NotImplemented
        return self._canonical < other._canonical

    def __hash__(self) -> int:
        return hash(self._canonical)


def _has_wildcard(text: str) -> bool:
    return "*" in text or "?" in text


@runtime_checkable
class Inspectable(Protocol):
    """Anything that can describe and read its own attributes."""

    description: str

    def list_attributes(self) -> list[AttributeInfo]: ...

    def list_operations(self) -> list[OperationInfo]: ...

    def read_attribute(self, name: str) -> Any: ...


class attribute:
    """
    Declare a readable bean attribute.

    Used as a decorator on a getter method, like ``property``::

        @attribute("int", "Number of live threads")
        def ThreadCount(self):
            return threading.active_count()
    """

    def __init__(self, type_name: str, description: str = "") -> None:
        self.type_name = type_name
        self.description = description
        self.getter: Callable[[Any], Any] | None = None
        self.name = ""

    def __call__(self, getter: Callable[[Any], Any]) -> "attribute":
        self.getter = getter
        self.name = getter.__name__
        return self

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return self.getter(instance)


def operation(description: str = "") -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a method as a bean operation. Operations are listed, never invoked."""

    def decorate(func: Callable[..., Any]) -> Callable[..., Any]:
        func.__bean_operation__ = description
        return func

    return decorate


def _type_name(annotation: Any) -> str:
    if annotation is inspect.Parameter.empty or annotation is inspect.Signature.empty:
        return "object"
    if annotation is None:
        return "None"
    if isinstance(annotation, type):
        return annotation.__name__
    return str(annotation)


class ManagedBean:
    """Base class for beans that declare attributes and operations in Python."""

    description = ""

    def list_attributes(self) -> list[AttributeInfo]:
        attrs = []
        for name, member in _class_members(type(self)):
            if isinstance(member, attribute):
                attrs.append(AttributeInfo(name, member.type_name, member.description))
        return attrs

    def list_operations(self) -> list[OperationInfo]:
        ops = []
        for name, member in _class_members(type(self)):
            desc = getattr(member, "__bean_operation__", None)
            if desc is None or not callable(member):
                continue
            sig = inspect.signature(member)
            params = tuple(
                ParameterInfo(p.name, _type_name(p.annotation))
                for p in list(sig.parameters.values())[1:]
            )
            ops.append(OperationInfo(name, _type_name(sig.return_annotation), params, desc))
        return ops

    def read_attribute(self, name: str) -> Any:
        member = inspect.getattr_static(type(self), name, None)
        if not isinstance(member, attribute):
            raise AttributeNotFoundError(f"No such attribute: {name}")
        return member.__get__(self, type(self))


def _class_members(cls: type) -> list[tuple[str, Any]]:
    """Public class members in definition order, base classes first."""
    seen: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        for name, member in vars(klass).items():
            if not name.startswith("_"):
                seen[name] = member
    return list(seen.items())


class BeanRegistry:
    """
    Read-mostly registry of management beans.

    Registration is guarded by a lock; every query works on a copy of the
    current registrations, so a report never sees a half-updated registry.
    """

    def __init__(self, default_domain: str = DEFAULT_DOMAIN) -> None:
        self._default_domain = default_domain
        self._beans: dict[ObjectName, Inspectable] = {}
        self._lock = threading.Lock()

    @property
    def default_domain(self) -> str:
        return self._default_domain

    def register(self, name: ObjectName | str, bean: Inspectable) -> ObjectName:
        """Register a bean. Re-registering a name replaces the previous bean."""
        object_name = _as_name(name)
        if object_name.is_pattern:
            raise MalformedObjectNameError(f"Cannot register a pattern: {object_name}")
        if not object_name.domain:
            object_name = ObjectName(f"{self._default_domain}:{object_name.canonical_name[1:]}")
        with self._lock:
            self._beans[object_name] = bean
        logger.debug("bean_registered", name=str(object_name))
        return object_name

    def unregister(self, name: ObjectName | str) -> None:
        object_name = _as_name(name)
        with self._lock:
            removed = self._beans.pop(object_name, None)
        if removed is None:
            raise InstanceNotFoundError(str(object_name))
        logger.debug("bean_unregistered", name=str(object_name))

    def is_registered(self, name: ObjectName | str) -> bool:
        with self._lock:
            return _as_name(name) in self._beans

    def find_beans(self, pattern: str | ObjectName | None = None) -> set[ObjectName]:
        """
        Names of all beans matching a pattern.

        ``None`` selects every bean. A malformed pattern selects nothing;
        it is logged and never raised, so bad input cannot break a report.
        """
        with self._lock:
            names = list(self._beans)
        if pattern is None:
            return set(names)
        try:
            query = _as_name(pattern)
        except MalformedObjectNameError as e:
            logger.warning("malformed_bean_pattern", pattern=str(pattern), error=str(e))
            return set()
        return {name for name in names if query.matches(name)}

    def domains(self) -> list[str]:
        with self._lock:
            return sorted({name.domain for name in self._beans})

    def bean_count(self) -> int:
        with self._lock:
            return len(self._beans)

    def _lookup(self, name: ObjectName | str) -> Inspectable:
        object_name = _as_name(name)
        with self._lock:
            bean = self._beans.get(object_name)
        if bean is None:
            raise InstanceNotFoundError(str(object_name))
        return bean

    def get_attribute(self, name: ObjectName | str, attr: str) -> Any:
        """Read one attribute. Raises if the bean vanished or the read fails."""
        return self._lookup(name).read_attribute(attr)

    def get_attributes(self, name: ObjectName | str, attrs: Iterable[str]) -> list[Any]:
        bean = self._lookup(name)
        return [bean.read_attribute(attr) for attr in attrs]

    def get_descriptor(self, name: ObjectName | str) -> BeanDescriptor:
        """Describe a bean. Computed on every call, never cached."""
        bean = self._lookup(name)
        return BeanDescriptor(
            class_name=f"{type(bean).__module__}.{type(bean).__qualname__}",
            description=getattr(bean, "description", "") or "",
            attributes=tuple(bean.list_attributes()),
            operations=tuple(bean.list_operations()),
        )


def _as_name(name: ObjectName | str) -> ObjectName:
    if isinstance(name, ObjectName):
        return name
    return ObjectName(name)
