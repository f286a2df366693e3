"""Tests for report routing and rendering."""

import io

import pytest

from sakai_status.dispatcher import EndpointDispatcher, report_routes

ALL_PATHS = [
    "/sakai/beans",
    "/sakai/cache",
    "/sakai/database",
    "/sakai/functions",
    "/sakai/properties",
    "/sakai/sessions",
    "/sakai/sessions/all-users",
    "/sakai/sessions/counts",
    "/sakai/sessions/total",
    "/sakai/sessions/users-by-server",
    "/sakai/tools",
    "/system/memory",
    "/system/properties",
    "/tomcat/current/uris",
    "/tomcat/mbeans",
    "/tomcat/mbeans/details",
    "/tomcat/mbeans/domains",
    "/tomcat/threadgroups",
    "/tomcat/threads",
    "/tomcat/threads/details",
    "/tomcat/threads/stacks",
    "/tomcat/webapps",
    "/tomcat/webapps/details",
]


def test_catalog_is_sorted(dispatcher):
    assert list(dispatcher.catalog) == ALL_PATHS


def test_endpoint_routes_lists_families_last(dispatcher):
    routes = dispatcher.endpoint_routes()
    assert [r.path for r in routes if not r.parameterized] == ALL_PATHS
    assert {r.path for r in routes if r.parameterized} == {"/sakai/tools/", "/sakai/cache/"}


@pytest.mark.parametrize("path", ALL_PATHS)
def test_every_route_renders_without_error(dispatcher, path):
    assert not dispatcher.render(path).startswith("Exception: ")


class TestRouting:
    """Exact matches, families and unknown paths."""

    def test_unknown_path_renders_empty(self, dispatcher):
        assert dispatcher.resolve("/does/not/exist") is None
        assert dispatcher.render("/does/not/exist") == ""

    def test_dispatch_reports_whether_a_route_matched(self, dispatcher):
        assert dispatcher.dispatch("/sakai/tools", io.StringIO())
        assert not dispatcher.dispatch("/nowhere", io.StringIO())

    def test_exact_match_wins_over_family(self, dispatcher):
        assert dispatcher.render("/sakai/tools") == "sakai.announcements\nsakai.gradebook\n"

    def test_family_passes_remainder(self, dispatcher):
        assert dispatcher.render("/sakai/tools/sakai.announcements").startswith(
            "id: sakai.announcements\n"
        )

    def test_family_with_empty_remainder(self, dispatcher):
        assert dispatcher.render("/sakai/tools/") == "ERROR: no such tool ID\n"

    def test_trailing_text_does_not_match_exact_route(self, dispatcher):
        assert dispatcher.render("/system/memoryx") == ""

    def test_longest_prefix_wins(self):
        seen = []
        dispatcher = EndpointDispatcher(
            {},
            {
                "/a/": lambda arg, out: seen.append(("short", arg)),
                "/a/b/": lambda arg, out: seen.append(("long", arg)),
            },
        )
        dispatcher.render("/a/b/c")
        dispatcher.render("/a/c")
        assert seen == [("long", "c"), ("short", "c")]


class TestErrors:
    """Failures become a one-line error body."""

    def test_unknown_cache(self, dispatcher):
        assert dispatcher.render("/sakai/cache/UNKNOWN") == "Exception: No such cache name: UNKNOWN\n"

    def test_known_cache(self, dispatcher):
        body = dispatcher.render("/sakai/cache/users")
        assert body.startswith("name: users\n")
        assert body.endswith("hitratio: 0%\n")

    def test_partial_output_is_dropped(self):
        def half_written(out):
            out.write("first line\n")
            raise RuntimeError("lost the connection")

        dispatcher = EndpointDispatcher({"/half": half_written})
        assert dispatcher.render("/half") == "Exception: lost the connection\n"

    def test_missing_component(self, dispatcher, components):
        components.unregister("sakai.tool.SessionManager")
        assert dispatcher.render("/sakai/sessions") == "Exception: Could not get SessionManager bean.\n"


def test_routes_are_read_only(reports):
    dispatcher = EndpointDispatcher(report_routes(reports))
    with pytest.raises(TypeError):
        dispatcher.routes["/new"] = print


def test_rendering_is_deterministic(dispatcher):
    for path in ("/sakai/tools", "/sakai/functions", "/sakai/properties", "/tomcat/mbeans"):
        assert dispatcher.render(path) == dispatcher.render(path)
