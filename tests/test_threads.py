"""Tests for thread groups and the thread tree walker."""

import gc
import io
import sys
import threading
import time

import pytest

from sakai_status.models import StackFrame, ThreadGroupNode, ThreadSnapshot
from sakai_status.threads import (
    MAIN_GROUP,
    SYSTEM_GROUP,
    UNAVAILABLE_STACK,
    UNKNOWN_LOCATION,
    ThreadGroup,
    ThreadWalker,
    find_root_group,
    format_location,
    format_stack,
    group_of,
    render_thread_details,
    render_thread_groups,
    render_thread_stacks,
    walk_groups,
)


def make_snapshot(stack=None, **overrides) -> ThreadSnapshot:
    fields = dict(
        group_name="main",
        ident=42,
        name="worker",
        priority=0,
        state="RUNNABLE",
        alive=True,
        daemon=False,
        interrupted=False,
        stack=stack,
    )
    fields.update(overrides)
    return ThreadSnapshot(**fields)


FRAME_A = StackFrame(module="app.jobs", function="Job.run", filename="jobs.py", lineno=10)
FRAME_B = StackFrame(module="threading", function="Thread.run", filename="threading.py", lineno=990)


@pytest.fixture
def parked():
    """A started thread in its own group, blocked until the test ends."""
    release = threading.Event()
    group = ThreadGroup("parked", MAIN_GROUP)
    thread = group.thread(target=release.wait, name="parked-worker", daemon=True)
    thread.start()
    yield group, thread
    release.set()
    thread.join(timeout=5)
    group.destroy()


class TestThreadGroup:
    """Group tree bookkeeping."""

    def test_roots(self):
        assert SYSTEM_GROUP.parent is None
        assert MAIN_GROUP.parent is SYSTEM_GROUP
        assert find_root_group() is SYSTEM_GROUP

    def test_threads_default_to_main(self):
        assert group_of(threading.current_thread()) is MAIN_GROUP

    def test_child_group_is_enumerated(self):
        group = ThreadGroup("child", MAIN_GROUP)
        try:
            assert group in MAIN_GROUP.enumerate_groups()
            assert group.parent is MAIN_GROUP
        finally:
            group.destroy()
        assert group not in MAIN_GROUP.enumerate_groups()

    def test_thread_membership(self, parked):
        group, thread = parked
        assert group_of(thread) is group
        assert group.enumerate_threads() == [thread]
        assert group.active_count() == 1
        assert thread not in MAIN_GROUP.enumerate_threads()
        assert thread in MAIN_GROUP.enumerate_threads(recurse=True)

    def test_counts_are_direct(self, parked):
        group, _ = parked
        inner = ThreadGroup("inner", group)
        try:
            assert group.active_group_count() == 1
            assert inner.active_count() == 0
            assert SYSTEM_GROUP.active_count() == 0
        finally:
            inner.destroy()

    def test_walk_visits_each_group_once(self):
        a = ThreadGroup("dup", MAIN_GROUP)
        b = ThreadGroup("dup", MAIN_GROUP)
        c = ThreadGroup("dup", a)
        try:
            walked = walk_groups(SYSTEM_GROUP)
            assert walked[0] is SYSTEM_GROUP
            for group in (a, b, c):
                assert sum(1 for g in walked if g is group) == 1
            assert walked.index(a) < walked.index(c)
        finally:
            for group in (c, b, a):
                group.destroy()


class TestThreadWalker:
    """Snapshots and the group tree as seen by the walker."""

    def test_list_threads_includes_current_thread(self):
        snapshots = ThreadWalker().list_threads()
        me = threading.current_thread()
        (mine,) = [s for s in snapshots if s.ident == me.ident]
        assert mine.name == me.name
        assert mine.group_name == "main"
        assert mine.alive
        assert mine.state == "RUNNABLE"
        assert mine.stack is not None
        assert mine.stack[0].function == "ThreadWalker.list_threads"
        assert len(mine.stack) >= 2

    def test_blocked_thread_reports_waiting(self, parked):
        group, thread = parked
        walker = ThreadWalker()
        deadline = time.monotonic() + 5
        while True:
            (snap,) = [s for s in walker.list_threads() if s.ident == thread.ident]
            if snap.state == "WAITING" or time.monotonic() > deadline:
                break
            time.sleep(0.01)
        assert snap.group_name == "parked"
        assert snap.daemon
        assert snap.state == "WAITING"

    def test_missing_frames_give_no_stack(self, parked):
        _, thread = parked
        walker = ThreadWalker(frame_source=dict)
        (snap,) = [s for s in walker.list_threads() if s.ident == thread.ident]
        assert snap.stack is None
        assert format_location(snap) == UNKNOWN_LOCATION
        assert format_stack(snap) == UNAVAILABLE_STACK

    def test_list_groups_from_custom_root(self):
        root = ThreadGroup("root")
        child = ThreadGroup("child", root)
        grandchild = ThreadGroup("grandchild", child)

        node = ThreadWalker(root_finder=lambda: root).list_groups()
        assert node.name == "root"
        assert node.parent_name == ""
        assert node.group_count == 1
        assert [c.name for c in node.children] == ["child"]
        assert node.children[0].parent_name == "root"
        assert [g.name for g in node.children[0].children] == [grandchild.name]

    def test_group_chain_deeper_than_recursion_limit(self):
        """A very deep group chain is built and rendered without recursing."""
        depth = sys.getrecursionlimit() + 500
        chain = [ThreadGroup("level-0")]
        for level in range(1, depth):
            chain.append(ThreadGroup(f"level-{level}", chain[-1]))

        node = ThreadWalker(root_finder=lambda: chain[0]).list_groups()
        out = io.StringIO()
        render_thread_groups(node, out)
        lines = out.getvalue().splitlines()

        assert len(lines) == depth
        assert lines[0] == "level-0,,0,1"
        assert lines[-1] == f"{'  ' * (depth - 1)}level-{depth - 1},level-{depth - 2},0,0"

    def test_collected_groups_are_skipped(self):
        root = ThreadGroup("root")
        ThreadGroup("transient", root)
        gc.collect()
        node = ThreadWalker(root_finder=lambda: root).list_groups()
        assert node.children == ()
        assert node.group_count == 0


class TestRendering:
    """Report line formats."""

    def test_location_needs_two_frames(self):
        assert format_location(make_snapshot(stack=())) == UNKNOWN_LOCATION
        assert format_location(make_snapshot(stack=(FRAME_A,))) == UNKNOWN_LOCATION

    def test_location_with_two_frames(self):
        snap = make_snapshot(stack=(FRAME_A, FRAME_B))
        assert format_location(snap) == (
            "app.jobs.Job.run(),jobs.py:10,threading.Thread.run(),threading.py:990"
        )

    def test_stack_line(self):
        snap = make_snapshot(stack=(FRAME_A, FRAME_B))
        assert format_stack(snap) == (
            "app.jobs.Job.run();jobs.py:10 threading.Thread.run();threading.py:990 "
        )

    def test_thread_details_line(self):
        out = io.StringIO()
        render_thread_details([make_snapshot(stack=(FRAME_A, FRAME_B), daemon=True)], out)
        assert out.getvalue() == (
            "main,42,worker,0,RUNNABLE,,daemon,,"
            "app.jobs.Job.run(),jobs.py:10,threading.Thread.run(),threading.py:990\n"
        )

    def test_thread_details_flags(self):
        out = io.StringIO()
        render_thread_details([make_snapshot(alive=False, interrupted=True, state="TERMINATED")], out)
        assert out.getvalue() == "main,42,worker,0,TERMINATED,notalive,,interrupted,?,?,?,?\n"

    def test_thread_stacks_line(self):
        out = io.StringIO()
        render_thread_stacks([make_snapshot(stack=(FRAME_A,)), make_snapshot(ident=7)], out)
        assert out.getvalue() == "main 42 app.jobs.Job.run();jobs.py:10 \nmain 7 -\n"

    def test_thread_groups_indentation(self):
        tree = ThreadGroupNode(
            name="system",
            parent_name="",
            thread_count=0,
            group_count=1,
            children=(
                ThreadGroupNode(
                    name="main",
                    parent_name="system",
                    thread_count=2,
                    group_count=1,
                    children=(ThreadGroupNode("pool", "main", 4, 0, ()),),
                ),
            ),
        )
        out = io.StringIO()
        render_thread_groups(tree, out)
        assert out.getvalue() == "system,,0,1\n  main,system,2,1\n    pool,main,4,0\n"
