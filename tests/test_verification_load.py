"""Verification Test: concurrent report requests.

Many clients request reports at once. Every response must be a complete
report or a one-line error body, and requests must not see each other's
output.
"""

import time
from concurrent.futures import ThreadPoolExecutor

from fastapi.testclient import TestClient

from sakai_status.config import StatusConfig
from sakai_status.server import StatusServer


class TestConcurrentLoad:
    """Load verification suite tests."""

    def test_concurrent_requests(self, reports):
        """
        Test that concurrent requests each get their own, correct body.

        Requests for different reports are interleaved from several client
        threads against a small worker pool.
        """
        server = StatusServer(StatusConfig(worker_threads=4), reports)
        expected = {
            "/sakai/tools": "sakai.announcements\nsakai.gradebook\n",
            "/sakai/functions": "annc.read\nsite.upd\nsite.visit\n",
            "/sakai/sessions/counts": "app: 2\nbatch: 2\ntotal: 4\n",
            "/sakai/cache/UNKNOWN": "Exception: No such cache name: UNKNOWN\n",
            "/nowhere": "",
        }
        paths = list(expected) * 40

        try:
            with TestClient(server.app) as client:
                start = time.time()
                with ThreadPoolExecutor(max_workers=8) as pool:
                    responses = list(pool.map(lambda p: (p, client.get(p)), paths))
                elapsed = time.time() - start

                for path, response in responses:
                    assert response.status_code == 200
                    assert response.text == expected[path]

                assert server.web_module.requestCount == len(paths)
                assert server.web_module.errorCount == paths.count("/sakai/cache/UNKNOWN")
                assert server.pool_bean.currentThreadsBusy == 0
                assert server.pool_bean.currentThreadCount <= 4
        finally:
            server.executor.shutdown(wait=True)

        print(f"\nServed {len(paths)} requests in {elapsed:.2f}s")

    def test_report_rendering_throughput(self, dispatcher):
        """Rendering the bean and thread reports stays fast."""
        start = time.time()
        for _ in range(100):
            dispatcher.render("/tomcat/threads/details")
            dispatcher.render("/sakai/sessions/all-users")
        elapsed = time.time() - start
        assert elapsed < 10.0, f"200 renderings took {elapsed:.2f}s"
