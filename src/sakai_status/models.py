"""Data models for sakai-status."""

from collections.abc import Callable
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class AttributeInfo:
    """Metadata for one readable bean attribute."""

    name: str
    type: str
    description: str


@dataclass(slots=True, frozen=True)
class ParameterInfo:
    """Metadata for one operation parameter."""

    name: str
    type: str
    description: str = ""


@dataclass(slots=True, frozen=True)
class OperationInfo:
    """Metadata for one bean operation."""

    name: str
    return_type: str
    parameters: tuple[ParameterInfo, ...]
    description: str


@dataclass(slots=True, frozen=True)
class BeanDescriptor:
    """Attributes and operations of a bean, computed on demand."""

    class_name: str
    description: str
    attributes: tuple[AttributeInfo, ...]
    operations: tuple[OperationInfo, ...]


@dataclass(slots=True, frozen=True)
class StackFrame:
    """One frame of a thread's stack."""

    module: str
    function: str  # qualified name, e.g. 'Worker.run'
    filename: str  # base name only
    lineno: int


@dataclass(slots=True, frozen=True)
class ThreadSnapshot:
    """Immutable capture of a thread's state."""

    group_name: str
    ident: int
    name: str
    priority: int
    state: str  # 'NEW', 'RUNNABLE', 'WAITING', 'TERMINATED'
    alive: bool
    daemon: bool
    interrupted: bool
    stack: tuple[StackFrame, ...] | None  # innermost first, None if unavailable


@dataclass(slots=True, frozen=True)
class ThreadGroupNode:
    """One level of the thread-group tree."""

    name: str
    parent_name: str
    thread_count: int
    group_count: int
    children: tuple["ThreadGroupNode", ...]


@dataclass(slots=True, frozen=True)
class CacheDescriptor:
    """Configuration and live counters of a named cache."""

    name: str
    memory_size: int  # Bytes
    eviction_policy: str
    max_entries: int
    ttl: int  # Seconds
    tti: int  # Seconds
    eternal: bool
    persistence_strategy: str
    object_count: int
    hits: int
    misses: int
    evictions: int
    average_get_time: float  # Milliseconds

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> int:
        return hit_ratio(self.hits, self.misses)


def hit_ratio(hits: int, misses: int) -> int:
    """Percentage of lookups that hit, truncated. 0 when there were none."""
    total = hits + misses
    if total <= 0:
        return 0
    return (100 * hits) // total


@dataclass(slots=True, frozen=True)
class EndpointRoute:
    """A report path and the handler that renders it."""

    path: str
    handler: Callable[..., None]
    parameterized: bool = False
