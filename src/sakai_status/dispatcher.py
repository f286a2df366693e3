"""Maps report paths to report handlers."""

import io
from collections.abc import Callable, Iterable, Mapping
from functools import cached_property
from types import MappingProxyType
from typing import TextIO

import structlog

from sakai_status.models import EndpointRoute
from sakai_status.reports import StatusReports

logger = structlog.get_logger(__name__)

Handler = Callable[[TextIO], None]
ParameterizedHandler = Callable[[str, TextIO], None]


class EndpointDispatcher:
    """
    Resolves a path to a report and renders it.

    Routes are fixed when the dispatcher is built. A path is looked up
    exactly first, then against the parameterized families by prefix
    (longest prefix wins), with the rest of the path passed to the handler.
    A path that matches nothing renders as an empty body.
    """

    def __init__(
        self,
        routes: Mapping[str, Handler],
        families: Mapping[str, ParameterizedHandler] | None = None,
    ) -> None:
        self._routes = MappingProxyType(dict(routes))
        self._families = tuple(
            sorted((families or {}).items(), key=lambda item: len(item[0]), reverse=True)
        )

    @property
    def routes(self) -> Mapping[str, Handler]:
        return self._routes

    @cached_property
    def catalog(self) -> tuple[str, ...]:
        """Exact-match paths in sorted order."""
        return tuple(sorted(self._routes))

    def endpoint_routes(self) -> list[EndpointRoute]:
        exact = [EndpointRoute(path, self._routes[path]) for path in self.catalog]
        prefixed = [EndpointRoute(prefix, handler, parameterized=True) for prefix, handler in self._families]
        return exact + prefixed

    def resolve(self, path: str) -> Handler | None:
        """The handler for a path, with any family parameter already bound."""
        handler = self._routes.get(path)
        if handler is not None:
            return handler
        for prefix, family in self._families:
            if path.startswith(prefix):
                argument = path[len(prefix):]
                return lambda out: family(argument, out)
        return None

    def dispatch(self, path: str, out: TextIO) -> bool:
        """Run the report for ``path`` into ``out``. False if nothing matched."""
        handler = self.resolve(path)
        if handler is None:
            logger.debug("path_not_routed", path=path)
            return False
        handler(out)
        return True

    def render(self, path: str) -> str:
        """
        Render a report to text.

        Any failure is logged with its traceback and becomes the body
        ``Exception: <message>``; whatever the report had written is dropped.
        """
        out = io.StringIO()
        try:
            self.dispatch(path, out)
        except Exception as e:
            logger.exception("report_failed", path=path, error_type=type(e).__name__)
            return f"Exception: {e}\n"
        return out.getvalue()


def report_routes(reports: StatusReports) -> dict[str, Handler]:
    return {
        "/tomcat/mbeans": reports.bean_names,
        "/tomcat/mbeans/details": reports.bean_details,
        "/tomcat/mbeans/domains": reports.bean_domains,
        "/tomcat/current/uris": reports.current_uris,
        "/tomcat/threads": reports.thread_pools,
        "/tomcat/threads/details": reports.thread_details,
        "/tomcat/threads/stacks": reports.thread_stacks,
        "/tomcat/threadgroups": reports.thread_groups,
        "/tomcat/webapps": reports.webapps,
        "/tomcat/webapps/details": reports.webapp_details,
        "/system/memory": reports.memory,
        "/system/properties": reports.system_properties,
        "/sakai/database": reports.database,
        "/sakai/beans": reports.components_list,
        "/sakai/sessions": reports.active_sessions,
        "/sakai/sessions/counts": reports.session_counts,
        "/sakai/sessions/total": reports.session_total,
        "/sakai/sessions/users-by-server": reports.users_by_server,
        "/sakai/sessions/all-users": reports.all_users,
        "/sakai/properties": reports.application_properties,
        "/sakai/tools": reports.tools,
        "/sakai/functions": reports.functions,
        "/sakai/cache": reports.cache_names,
    }


def report_families(reports: StatusReports) -> dict[str, ParameterizedHandler]:
    return {
        "/sakai/tools/": reports.tool_detail,
        "/sakai/cache/": reports.cache_detail,
    }


def build_dispatcher(reports: StatusReports, extra_routes: Iterable[tuple[str, Handler]] = ()) -> EndpointDispatcher:
    routes = report_routes(reports)
    routes.update(extra_routes)
    return EndpointDispatcher(routes, report_families(reports))
