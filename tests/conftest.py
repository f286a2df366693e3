"""Shared fixtures for the sakai-status tests."""

import pytest

from sakai_status import collaborators as keys
from sakai_status.caches import CacheManager
from sakai_status.collaborators import (
    ApplicationRegistry,
    CountingDataSource,
    InMemoryFunctionManager,
    InMemoryPropertyStore,
    InMemorySessions,
    InMemoryToolManager,
    InMemoryUserDirectory,
    SimpleTool,
    SimpleUser,
)
from sakai_status.dispatcher import build_dispatcher
from sakai_status.mbeans import BeanRegistry, ManagedBean, attribute, operation
from sakai_status.reports import StatusReports


class SampleBean(ManagedBean):
    """A bean with two attributes and one operation."""

    description = "Sample"

    def __init__(self, size: int = 3) -> None:
        self._size = size

    @attribute("int", "Number of things")
    def Size(self) -> int:
        return self._size

    @attribute("str", "Display label")
    def Label(self) -> str:
        return "sample"

    @operation("Resize the sample")
    def resize(self, size: int, force: bool) -> int:
        return size


class FailingBean(ManagedBean):
    """A bean whose second attribute cannot be read."""

    description = "Half broken"

    @attribute("str", "Always readable")
    def Good(self) -> str:
        return "ok"

    @attribute("str", "Fails while shutting down")
    def Broken(self) -> str:
        raise RuntimeError("resource closed")


@pytest.fixture
def beans() -> BeanRegistry:
    return BeanRegistry()


@pytest.fixture
def sessions() -> InMemorySessions:
    now = [1_000_000.0]
    sessions = InMemorySessions(clock=lambda: now[0])
    sessions.open("s1", "u1", "app-1")
    sessions.open("s2", "u2", "app-1")
    sessions.open("s3", "u3", "batch-22")
    sessions.open("s4", "ghost", "batch-22")
    return sessions


@pytest.fixture
def cache_manager() -> CacheManager:
    manager = CacheManager()
    manager.create_cache("users", max_entries=100, ttl=300, tti=60)
    manager.create_cache("sites", max_entries=2, eviction_policy="LFU", eternal=True)
    return manager


@pytest.fixture
def components(sessions, cache_manager) -> ApplicationRegistry:
    registry = ApplicationRegistry()
    registry.register(keys.SESSION_MANAGER, sessions)
    registry.register(keys.USAGE_SESSION_SERVICE, sessions)
    registry.register(
        keys.USER_DIRECTORY_SERVICE,
        InMemoryUserDirectory([SimpleUser("u1", "alice"), SimpleUser("u2", "bob"), SimpleUser("u3", "carol")]),
    )
    registry.register(
        keys.TOOL_MANAGER,
        InMemoryToolManager(
            [
                SimpleTool(
                    "sakai.gradebook",
                    title="Gradebook",
                    description="Grades",
                    registered_config={"max.items": "50", "columns": "4"},
                    keywords={"grades", "assessment"},
                ),
                SimpleTool("sakai.announcements", title="Announcements"),
            ]
        ),
    )
    registry.register(keys.FUNCTION_MANAGER, InMemoryFunctionManager(["site.visit", "annc.read", "site.upd"]))
    registry.register(
        keys.SERVER_CONFIGURATION,
        InMemoryPropertyStore(
            {"serverName": "lms", "password.db": "hunter2", "db.password": "secret", "passwordless": "x"}
        ),
    )
    registry.register(keys.DATA_SOURCE, CountingDataSource(active=3, idle=7))
    registry.register(keys.CACHE_MANAGER, cache_manager)
    return registry


@pytest.fixture
def system_props() -> dict[str, str]:
    return {"python.version": "3.12.1", "password.db": "hunter2", "db.password": "secret"}


@pytest.fixture
def reports(beans, components, system_props) -> StatusReports:
    return StatusReports(beans, components, properties=lambda: system_props)


@pytest.fixture
def dispatcher(reports):
    return build_dispatcher(reports)
