"""The plain-text status reports.

Every report is a method taking the output stream. Reports read live state
each time they run and never change anything they look at.
"""

import re
from collections.abc import Callable, Collection, Iterable, Mapping
from typing import TextIO

import psutil
import structlog

from sakai_status import collaborators as keys
from sakai_status.caches import describe, render_cache_details
from sakai_status.collaborators import ApplicationRegistry, UsageSession, pool_counts
from sakai_status.errors import CollaboratorNotFoundError, StatusError, UserNotDefinedError
from sakai_status.mbeans import BeanRegistry, ObjectName
from sakai_status.renderer import (
    describe_or_skip,
    render_attribute_table,
    render_bean_details,
    render_bean_names,
    render_domains,
    sorted_beans,
)
from sakai_status.runtime_beans import system_properties
from sakai_status.threads import (
    ThreadWalker,
    render_thread_details,
    render_thread_groups,
    render_thread_stacks,
)

logger = structlog.get_logger(__name__)

REDACTED = "********"
SESSION_WINDOWS = (3600, 1800, 900, 300)

THREAD_POOL_PATTERN = "*:type=ThreadPool,*"
REQUEST_PROCESSOR_PATTERN = "*:type=RequestProcessor,*"
WEB_MODULE_PATTERN = "*:j2eeType=WebModule,*"

_SERVER_INSTANCE_SUFFIX = re.compile(r"-[0-9]+$")


def server_name(key: str) -> str:
    """Strip the ``-<n>`` instance suffix from a server id."""
    return _SERVER_INSTANCE_SUFFIX.sub("", key)


def redact_system_property(key: str) -> bool:
    return key.startswith("password")


def redact_application_property(key: str) -> bool:
    return key.startswith("password") or key.endswith("password")


def render_properties(
    props: Mapping[str, str], redact: Callable[[str], bool], out: TextIO
) -> None:
    for key in sorted(props):
        value = REDACTED if redact(key) else props[key]
        out.write(f"{key}={value}\n")


def _write_section(title: str, props: Mapping[str, str] | None, out: TextIO) -> None:
    if not props:
        return
    out.write(f"{title}:\n")
    for key in sorted(props):
        out.write(f"  {key}: {props[key]}\n")


def _write_list(title: str, items: Collection[str] | None, out: TextIO) -> None:
    if not items:
        return
    out.write(f"{title}:\n")
    for item in sorted(items):
        out.write(f"  - {item}\n")


def _write_sorted(items: Iterable[str], out: TextIO) -> None:
    for item in sorted(items):
        out.write(f"{item}\n")


class StatusReports:
    """
    The report handlers, bound to the registries they read from.

    Reports about the hosting application go through ``components``; a
    report whose component is missing fails with CollaboratorNotFoundError.
    """

    def __init__(
        self,
        beans: BeanRegistry,
        components: ApplicationRegistry,
        walker: ThreadWalker | None = None,
        properties: Callable[[], Mapping[str, str]] = system_properties,
    ) -> None:
        """
        Initialize StatusReports.

        Args:
            beans: Management bean registry.
            components: Registry of application components.
            walker: Thread walker; a default one walks this process.
            properties: Source of the process-wide system properties.
        """
        self.beans = beans
        self.components = components
        self.walker = walker or ThreadWalker()
        self._properties = properties

    # Management beans

    def bean_names(self, out: TextIO) -> None:
        render_bean_names(self.beans, out)

    def bean_details(self, out: TextIO) -> None:
        render_bean_details(self.beans, out)

    def bean_domains(self, out: TextIO) -> None:
        render_domains(self.beans, out)

    def _read_each(
        self, pattern: str, attrs: list[str]
    ) -> Iterable[tuple[ObjectName, list[object]]]:
        """Attribute values per matching bean; beans that went away are skipped."""
        for name in sorted_beans(self.beans, pattern):
            try:
                values = self.beans.get_attributes(name, attrs)
            except StatusError as e:
                logger.warning("bean_read_failed", bean=str(name), error=str(e))
                continue
            yield name, values

    def current_uris(self, out: TextIO) -> None:
        for _, (worker, uri) in self._read_each(
            REQUEST_PROCESSOR_PATTERN, ["workerThreadName", "currentUri"]
        ):
            if uri is not None:
                out.write(f"{worker} {uri}\n")

    def thread_pools(self, out: TextIO) -> None:
        attrs = ["name", "maxThreads", "currentThreadCount", "currentThreadsBusy"]
        for _, values in self._read_each(THREAD_POOL_PATTERN, attrs):
            out.write(",".join(str(v) for v in values) + "\n")

    def webapps(self, out: TextIO) -> None:
        for _, (doc_base, processing_time) in self._read_each(
            WEB_MODULE_PATTERN, ["docBase", "processingTime"]
        ):
            out.write(f"{doc_base},{processing_time}\n")

    def webapp_details(self, out: TextIO) -> None:
        for name in sorted_beans(self.beans, WEB_MODULE_PATTERN):
            descriptor = describe_or_skip(self.beans, name)
            if descriptor is None:
                continue
            render_attribute_table(self.beans, name, descriptor, out)
            out.write("\n")
            for op in descriptor.operations:
                out.write(f"{op.name},{op.return_type},{op.description}\n")
            out.write("\n\n")

    # Threads

    def thread_details(self, out: TextIO) -> None:
        render_thread_details(self.walker.list_threads(), out)

    def thread_stacks(self, out: TextIO) -> None:
        render_thread_stacks(self.walker.list_threads(), out)

    def thread_groups(self, out: TextIO) -> None:
        render_thread_groups(self.walker.list_groups(), out)

    # Process

    def memory(self, out: TextIO) -> None:
        """Available system memory, this process's RSS, and total system memory."""
        vm = psutil.virtual_memory()
        rss = psutil.Process().memory_info().rss
        out.write(f"{vm.available},{rss},{vm.total}\n")

    def system_properties(self, out: TextIO) -> None:
        render_properties(self._properties(), redact_system_property, out)

    # Application components

    def database(self, out: TextIO) -> None:
        pool = self.components.get(keys.DATA_SOURCE)
        if pool is None:
            raise CollaboratorNotFoundError("No data source found.")
        counts = pool_counts(pool)
        if counts is None:
            out.write(f"Unsupported datasource implementation: {type(pool)}\n")
            return
        active, idle = counts
        out.write(f"{active},{idle}\n")

    def components_list(self, out: TextIO) -> None:
        _write_sorted(self.components.registered_interfaces(), out)

    def active_sessions(self, out: TextIO) -> None:
        manager = self.components.require(keys.SESSION_MANAGER, "SessionManager")
        counts = [str(manager.active_user_count(seconds)) for seconds in SESSION_WINDOWS]
        out.write(",".join(counts) + "\n")

    def _sessions_by_server(self) -> list[tuple[str, Collection[UsageSession]]]:
        service = self.components.require(keys.USAGE_SESSION_SERVICE, "UsageSessionService")
        return sorted(service.open_sessions_by_server().items())

    def _display_id(self, directory, user_id: str) -> str:
        try:
            return directory.get_user(user_id).display_id
        except UserNotDefinedError:
            return f'no display ID for userId "{user_id}"'

    def session_counts(self, out: TextIO) -> None:
        total = 0
        for key, sessions in self._sessions_by_server():
            out.write(f"{server_name(key)}: {len(sessions)}\n")
            total += len(sessions)
        out.write(f"total: {total}\n")

    def session_total(self, out: TextIO) -> None:
        total = sum(len(sessions) for _, sessions in self._sessions_by_server())
        out.write(f"{total}\n")

    def users_by_server(self, out: TextIO) -> None:
        directory = self.components.require(keys.USER_DIRECTORY_SERVICE, "UserDirectoryService")
        for key, sessions in self._sessions_by_server():
            out.write(f"{server_name(key)}:\n")
            for session in sessions:
                out.write(f"  - {self._display_id(directory, session.user_id)}\n")

    def all_users(self, out: TextIO) -> None:
        directory = self.components.require(keys.USER_DIRECTORY_SERVICE, "UserDirectoryService")
        for key, sessions in self._sessions_by_server():
            server = server_name(key)
            for session in sessions:
                out.write(f"{server}:\n")
                out.write(f"{self._display_id(directory, session.user_id)}\n")

    def application_properties(self, out: TextIO) -> None:
        store = self.components.require(keys.SERVER_CONFIGURATION, "ServerConfiguration")
        render_properties(store.raw_properties(), redact_application_property, out)

    def tools(self, out: TextIO) -> None:
        manager = self.components.require(keys.TOOL_MANAGER, "ToolManager")
        _write_sorted({tool.id for tool in manager.find_tools()}, out)

    def tool_detail(self, tool_id: str, out: TextIO) -> None:
        manager = self.components.require(keys.TOOL_MANAGER, "ToolManager")
        tool = manager.get_tool(tool_id)
        if tool is None:
            out.write("ERROR: no such tool ID\n")
            return
        out.write(f"id: {tool.id}\n")
        out.write(f"title: {tool.title}\n")
        out.write(f"description: {tool.description}\n")
        _write_section("registered_properties", tool.registered_config, out)
        _write_section("mutable_properties", tool.mutable_config, out)
        _write_section("final_properties", tool.final_config, out)
        _write_list("keywords", tool.keywords, out)
        _write_list("categories", tool.categories, out)

    def functions(self, out: TextIO) -> None:
        manager = self.components.require(keys.FUNCTION_MANAGER, "FunctionManager")
        _write_sorted(set(manager.registered_functions()), out)

    # Caches

    def cache_names(self, out: TextIO) -> None:
        manager = self.components.require(keys.CACHE_MANAGER, "CacheManager")
        _write_sorted(manager.cache_names(), out)

    def cache_detail(self, cache_name: str, out: TextIO) -> None:
        render_cache_details(describe(self.components.get(keys.CACHE_MANAGER), cache_name), out)
