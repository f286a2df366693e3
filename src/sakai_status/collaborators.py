"""Application components the reports read from.

Reports only need narrow, read-only views of the hosting application. Each
view is a ``Protocol``; the host registers its implementations in an
``ApplicationRegistry`` under the well-known keys below. The ``InMemory*``
classes are plain implementations for embedding and tests.
"""

import threading
import time
from collections.abc import Callable, Collection, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import structlog

from sakai_status.errors import CollaboratorNotFoundError, UserNotDefinedError

logger = structlog.get_logger(__name__)

SESSION_MANAGER = "sakai.tool.SessionManager"
USAGE_SESSION_SERVICE = "sakai.event.UsageSessionService"
USER_DIRECTORY_SERVICE = "sakai.user.UserDirectoryService"
TOOL_MANAGER = "sakai.tool.ActiveToolManager"
FUNCTION_MANAGER = "sakai.authz.FunctionManager"
SERVER_CONFIGURATION = "sakai.component.ServerConfiguration"
DATA_SOURCE = "sakai.db.DataSource"
CACHE_MANAGER = "sakai.memory.CacheManager"


class ApplicationRegistry:
    """Component lookup by interface name."""

    def __init__(self) -> None:
        self._components: dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, key: str, component: Any) -> None:
        with self._lock:
            self._components[key] = component
        logger.debug("component_registered", key=key, type=type(component).__name__)

    def unregister(self, key: str) -> None:
        with self._lock:
            self._components.pop(key, None)

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._components.get(key)

    def require(self, key: str, label: str) -> Any:
        """Look up a component a report cannot do without."""
        component = self.get(key)
        if component is None:
            raise CollaboratorNotFoundError(f"Could not get {label} bean.")
        return component

    def registered_interfaces(self) -> list[str]:
        with self._lock:
            return list(self._components)


class UsageSession(Protocol):
    user_id: str


class SessionManager(Protocol):
    def active_user_count(self, seconds: int) -> int: ...


class UsageSessionService(Protocol):
    def open_sessions_by_server(self) -> Mapping[str, Collection[UsageSession]]: ...


class User(Protocol):
    display_id: str


class UserDirectoryService(Protocol):
    def get_user(self, user_id: str) -> User:
        """Raises UserNotDefinedError for unknown ids."""
        ...


class Tool(Protocol):
    id: str
    title: str
    description: str
    registered_config: Mapping[str, str]
    mutable_config: Mapping[str, str]
    final_config: Mapping[str, str]
    keywords: Collection[str] | None
    categories: Collection[str] | None


class ToolManager(Protocol):
    def find_tools(self) -> Iterable[Tool]: ...

    def get_tool(self, tool_id: str) -> Tool | None: ...


class FunctionManager(Protocol):
    def registered_functions(self) -> list[str]: ...


class PropertyStore(Protocol):
    def raw_properties(self) -> Mapping[str, str]: ...


@runtime_checkable
class DataSource(Protocol):
    """A connection pool that reports its own counts."""

    def num_active(self) -> int: ...

    def num_idle(self) -> int: ...


@runtime_checkable
class CheckoutPool(Protocol):
    """A pool that counts checked-out and checked-in connections instead."""

    def checkedout(self) -> int: ...

    def checkedin(self) -> int: ...


def pool_counts(pool: Any) -> tuple[int, int] | None:
    """(active, idle) connections of a supported pool, or None."""
    if isinstance(pool, DataSource):
        return pool.num_active(), pool.num_idle()
    if isinstance(pool, CheckoutPool):
        return pool.checkedout(), pool.checkedin()
    return None


@dataclass(slots=True, frozen=True)
class SimpleUsageSession:
    id: str
    user_id: str
    server: str
    started: float = field(default_factory=time.time)


@dataclass(slots=True, frozen=True)
class SimpleUser:
    id: str
    display_id: str


@dataclass(slots=True, frozen=True)
class SimpleTool:
    id: str
    title: str = ""
    description: str = ""
    registered_config: Mapping[str, str] = field(default_factory=dict)
    mutable_config: Mapping[str, str] = field(default_factory=dict)
    final_config: Mapping[str, str] = field(default_factory=dict)
    keywords: Collection[str] | None = None
    categories: Collection[str] | None = None


class InMemorySessions:
    """Session bookkeeping serving both session views."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sessions: dict[str, SimpleUsageSession] = {}
        self._last_seen: dict[str, float] = {}
        self._lock = threading.Lock()

    def open(self, session_id: str, user_id: str, server: str) -> SimpleUsageSession:
        session = SimpleUsageSession(session_id, user_id, server, self._clock())
        with self._lock:
            self._sessions[session_id] = session
            self._last_seen[session_id] = session.started
        return session

    def touch(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._sessions:
                self._last_seen[session_id] = self._clock()

    def close(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
            self._last_seen.pop(session_id, None)

    def active_user_count(self, seconds: int) -> int:
        """Distinct users with a session active in the last ``seconds``."""
        cutoff = self._clock() - seconds
        with self._lock:
            return len(
                {
                    s.user_id
                    for sid, s in self._sessions.items()
                    if self._last_seen.get(sid, 0.0) >= cutoff
                }
            )

    def open_sessions_by_server(self) -> dict[str, list[SimpleUsageSession]]:
        by_server: dict[str, list[SimpleUsageSession]] = {}
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            by_server.setdefault(session.server, []).append(session)
        return by_server


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[SimpleUser] = ()) -> None:
        self._users = {u.id: u for u in users}

    def add(self, user: SimpleUser) -> None:
        self._users[user.id] = user

    def get_user(self, user_id: str) -> SimpleUser:
        try:
            return self._users[user_id]
        except KeyError:
            raise UserNotDefinedError(user_id) from None


class InMemoryToolManager:
    def __init__(self, tools: Iterable[SimpleTool] = ()) -> None:
        self._tools = {t.id: t for t in tools}

    def add(self, tool: SimpleTool) -> None:
        self._tools[tool.id] = tool

    def find_tools(self) -> list[SimpleTool]:
        return list(self._tools.values())

    def get_tool(self, tool_id: str) -> SimpleTool | None:
        return self._tools.get(tool_id)


class InMemoryFunctionManager:
    def __init__(self, functions: Iterable[str] = ()) -> None:
        self._functions = list(functions)

    def register(self, function: str) -> None:
        if function not in self._functions:
            self._functions.append(function)

    def registered_functions(self) -> list[str]:
        return list(self._functions)


class InMemoryPropertyStore:
    def __init__(self, properties: Mapping[str, str] | None = None) -> None:
        self._properties = dict(properties or {})

    def raw_properties(self) -> dict[str, str]:
        return dict(self._properties)


class CountingDataSource:
    """A pool facade for hosts that track connection counts themselves."""

    def __init__(self, active: int = 0, idle: int = 0) -> None:
        self.active = active
        self.idle = idle

    def num_active(self) -> int:
        return self.active

    def num_idle(self) -> int:
        return self.idle
