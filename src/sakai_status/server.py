"""HTTP transport for the status reports.

A thin FastAPI application: ``/`` serves the index page, every other GET
path is rendered through the dispatcher on a worker thread and returned as
``text/plain`` with status 200, whatever the report produced.
"""

import asyncio
import html
import itertools
import os
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

import sakai_status
from sakai_status import collaborators as keys
from sakai_status.caches import CacheManager
from sakai_status.collaborators import ApplicationRegistry
from sakai_status.config import StatusConfig
from sakai_status.dispatcher import EndpointDispatcher, build_dispatcher
from sakai_status.mbeans import BeanRegistry, ManagedBean, ObjectName, attribute, operation
from sakai_status.reports import StatusReports
from sakai_status.runtime_beans import register_platform_beans
from sakai_status.threads import MAIN_GROUP, ThreadGroup

logger = structlog.get_logger(__name__)

SERVER_DOMAIN = "Catalina"
POOL_NAME = "http-status-exec"


class ThreadPoolBean(ManagedBean):
    """Worker pool that runs the reports."""

    description = "Report worker thread pool"

    def __init__(self, name: str, max_threads: int) -> None:
        self._name = name
        self._max_threads = max_threads
        self._started = 0
        self._busy = 0
        self._lock = threading.Lock()

    def thread_started(self) -> None:
        with self._lock:
            self._started += 1

    def enter(self) -> None:
        with self._lock:
            self._busy += 1

    def leave(self) -> None:
        with self._lock:
            self._busy -= 1

    @attribute("str", "Pool name")
    def name(self) -> str:
        return self._name

    @attribute("int", "Maximum number of worker threads")
    def maxThreads(self) -> int:
        return self._max_threads

    @attribute("int", "Worker threads started so far")
    def currentThreadCount(self) -> int:
        return self._started

    @attribute("int", "Worker threads running a report")
    def currentThreadsBusy(self) -> int:
        return self._busy


class RequestProcessorBean(ManagedBean):
    """One in-flight request; registered for as long as it runs."""

    description = "Request being processed"

    def __init__(self, uri: str, worker: str) -> None:
        self._uri = uri
        self._worker = worker
        self._started = time.time()

    @attribute("str", "Path being served")
    def currentUri(self) -> str:
        return self._uri

    @attribute("str", "Thread serving the request")
    def workerThreadName(self) -> str:
        return self._worker

    @attribute("float", "Time the request started (epoch seconds)")
    def requestStartTime(self) -> float:
        return self._started


class WebModuleBean(ManagedBean):
    """The status application itself, with cumulative request counters."""

    description = "Status web module"

    def __init__(self, path: str, doc_base: str) -> None:
        self._path = path
        self._doc_base = doc_base
        self._processing_ms = 0
        self._requests = 0
        self._errors = 0
        self._lock = threading.Lock()

    def record(self, elapsed_ms: int, failed: bool) -> None:
        with self._lock:
            self._processing_ms += elapsed_ms
            self._requests += 1
            if failed:
                self._errors += 1

    @attribute("str", "Directory the module is served from")
    def docBase(self) -> str:
        return self._doc_base

    @attribute("str", "Context path")
    def path(self) -> str:
        return self._path

    @attribute("int", "Cumulative processing time in milliseconds")
    def processingTime(self) -> int:
        return self._processing_ms

    @attribute("int", "Requests served")
    def requestCount(self) -> int:
        return self._requests

    @attribute("int", "Requests that ended in an error body")
    def errorCount(self) -> int:
        return self._errors

    @operation("Reset the request counters")
    def resetCounters(self) -> None:
        with self._lock:
            self._processing_ms = self._requests = self._errors = 0


def build_reports(config: StatusConfig, components: ApplicationRegistry | None = None) -> StatusReports:
    """
    Wire up the registries the reports read from.

    The runtime beans are registered, and a cache manager holding the
    configured caches is added unless the host already registered one.
    """
    beans = BeanRegistry()
    register_platform_beans(beans)
    components = components or ApplicationRegistry()
    if components.get(keys.CACHE_MANAGER) is None:
        manager = CacheManager()
        for definition in config.caches:
            options = dict(definition)
            manager.create_cache(options.pop("name"), **options)
        components.register(keys.CACHE_MANAGER, manager)
    return StatusReports(beans, components)


def render_index(catalog: Sequence[str], context_path: str = "") -> str:
    """HTML page linking every exact-match report."""
    items = "\n".join(
        f'<li><a href="{html.escape(context_path + path)}">{html.escape(path)}</a></li>'
        for path in catalog
    )
    return (
        "<!DOCTYPE html>\n<html><head><title>Status</title></head>\n"
        f"<body><h1>Status endpoints</h1>\n<ul>\n{items}\n</ul></body></html>\n"
    )


class StatusServer:
    """
    Serves the reports over HTTP.

    Each report runs to completion on a thread of a dedicated pool, so a slow
    report holds one worker and never the event loop.
    """

    def __init__(
        self,
        config: StatusConfig,
        reports: StatusReports,
        index_page: Callable[[Sequence[str], str], str] = render_index,
    ) -> None:
        self.config = config
        self.reports = reports
        self.dispatcher: EndpointDispatcher = build_dispatcher(reports)
        self._index_page = index_page
        self._request_ids = itertools.count(1)

        self.worker_group = ThreadGroup(POOL_NAME, MAIN_GROUP)
        self.pool_bean = ThreadPoolBean(POOL_NAME, config.worker_threads)
        self.web_module = WebModuleBean(
            config.context_path or "/", os.path.dirname(os.path.abspath(sakai_status.__file__))
        )
        beans = reports.beans
        beans.register(f"{SERVER_DOMAIN}:type=ThreadPool,name={POOL_NAME}", self.pool_bean)
        beans.register(
            f"{SERVER_DOMAIN}:j2eeType=WebModule,name=//localhost{config.context_path or '/'}",
            self.web_module,
        )

        self.executor = ThreadPoolExecutor(
            max_workers=config.worker_threads,
            thread_name_prefix=POOL_NAME,
            initializer=self._worker_started,
        )
        self.app = self._create_app()

    def _worker_started(self) -> None:
        self.worker_group.add(threading.current_thread())
        self.pool_bean.thread_started()

    def request_path(self, raw_path: str) -> str | None:
        """Request path relative to the context path, None when outside it."""
        context = self.config.context_path
        if not context:
            return raw_path
        if raw_path == context or raw_path.startswith(context + "/"):
            return raw_path[len(context):] or "/"
        return None

    def render(self, path: str) -> str:
        """Render one report on the calling thread, tracked as a request."""
        name = ObjectName(
            f"{SERVER_DOMAIN}:type=RequestProcessor,worker={POOL_NAME},"
            f"name=HttpRequest{next(self._request_ids)}"
        )
        beans = self.reports.beans
        beans.register(name, RequestProcessorBean(path, threading.current_thread().name))
        self.pool_bean.enter()
        started = time.perf_counter()
        body = ""
        try:
            body = self.dispatcher.render(path)
            return body
        finally:
            self.pool_bean.leave()
            beans.unregister(name)
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            self.web_module.record(elapsed_ms, body.startswith("Exception: "))

    async def handle(self, request: Request) -> Response:
        path = self.request_path(request.url.path)
        if path is None:
            return PlainTextResponse("")
        if path in ("", "/"):
            return HTMLResponse(self._index_page(self.dispatcher.catalog, self.config.context_path))

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, self.render, path)
        try:
            body = await asyncio.wait_for(future, self.config.report_timeout)
        except asyncio.TimeoutError:
            logger.error("report_timed_out", path=path, timeout=self.config.report_timeout)
            body = f"Exception: report timed out after {self.config.report_timeout}s\n"
        return PlainTextResponse(body)

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            logger.info("status_server_started", endpoints=len(self.dispatcher.catalog))
            yield
            self.executor.shutdown(wait=False, cancel_futures=True)
            logger.info("status_server_stopped")

        app = FastAPI(
            title="sakai-status",
            version=sakai_status.__version__,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
            lifespan=lifespan,
        )
        app.add_api_route(
            "/{path:path}", self.handle, methods=["GET"], response_model=None, include_in_schema=False
        )
        return app


def serve(config: StatusConfig, components: ApplicationRegistry | None = None) -> None:
    """Run the status server until interrupted."""
    server = StatusServer(config, build_reports(config, components))
    logger.info("status_server_listening", host=config.host, port=config.port)
    uvicorn.run(
        server.app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=False,
    )
