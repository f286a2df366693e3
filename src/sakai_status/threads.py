"""Thread groups and the thread tree walker for sakai-status.

Python has no native thread groups, so threads are organised here into a
tree of ``ThreadGroup`` objects rooted at ``system``. A thread that was never
placed into a group belongs to ``main``. Membership is held weakly: once a
thread object is gone it drops out of its group, and a group nobody refers
to (no live member threads, no outside reference) drops out of its parent.
"""

import os
import sys
import threading
import weakref
from collections.abc import Callable, Iterable
from types import FrameType
from typing import Any, TextIO

import psutil
import structlog

from sakai_status.models import StackFrame, ThreadGroupNode, ThreadSnapshot

logger = structlog.get_logger(__name__)

UNKNOWN_LOCATION = "?,?,?,?"
UNAVAILABLE_STACK = "-"

# (module, qualified function) of frames where a thread sits blocked
_WAIT_POINTS = frozenset(
    {
        ("threading", "Condition.wait"),
        ("threading", "Event.wait"),
        ("threading", "Semaphore.acquire"),
        ("threading", "Barrier.wait"),
        ("threading", "Thread.join"),
        ("threading", "Thread._wait_for_tstate_lock"),
        ("queue", "Queue.get"),
        ("queue", "Queue.put"),
        ("concurrent.futures.thread", "_worker"),
    }
)

_membership: "weakref.WeakKeyDictionary[threading.Thread, ThreadGroup]" = weakref.WeakKeyDictionary()
_membership_lock = threading.Lock()


class ThreadGroup:
    """
    A named, live group of threads and child groups.

    Groups are mutable and never snapshotted: every count and enumeration
    reflects the state at the moment of the call.
    """

    def __init__(self, name: str, parent: "ThreadGroup | None" = None) -> None:
        """
        Create a group.

        Args:
            name: Display name. Names need not be unique.
            parent: Enclosing group, or None for a root group.
        """
        self._name = name
        self._parent = parent
        self._children: list[weakref.ref[ThreadGroup]] = []
        self._lock = threading.Lock()
        if parent is not None:
            parent._attach(self)

    @property
    def name(self) -> str:
        return self._name

    @property
    def parent(self) -> "ThreadGroup | None":
        return self._parent

    def __repr__(self) -> str:
        return f"ThreadGroup({self._name!r})"

    def _attach(self, child: "ThreadGroup") -> None:
        with self._lock:
            self._children.append(weakref.ref(child))

    def _detach(self, child: "ThreadGroup") -> None:
        with self._lock:
            self._children = [ref for ref in self._children if ref() not in (child, None)]

    def destroy(self) -> None:
        """Remove this group from its parent."""
        if self._parent is not None:
            self._parent._detach(self)

    def add(self, thread: threading.Thread) -> None:
        """Move a thread into this group."""
        with _membership_lock:
            _membership[thread] = self

    def thread(
        self,
        target: Callable[..., Any],
        name: str | None = None,
        args: Iterable[Any] = (),
        daemon: bool | None = None,
    ) -> threading.Thread:
        """Create an (unstarted) thread that belongs to this group."""
        t = threading.Thread(target=target, name=name, args=tuple(args), daemon=daemon)
        self.add(t)
        return t

    def enumerate_groups(self) -> list["ThreadGroup | None"]:
        """
        Direct child groups.

        Slots of groups that were collected since they were attached come
        back as None; callers skip them.
        """
        with self._lock:
            refs = list(self._children)
        return [ref() for ref in refs]

    def enumerate_threads(self, recurse: bool = False) -> list[threading.Thread]:
        """Live threads of this group, and of all descendants if ``recurse``."""
        if recurse:
            groups = {id(g) for g in walk_groups(self)}
        else:
            groups = {id(self)}
        return [t for t in threading.enumerate() if id(group_of(t)) in groups]

    def active_count(self) -> int:
        """Live threads directly in this group."""
        return len(self.enumerate_threads())

    def active_group_count(self) -> int:
        """Child groups directly under this group."""
        return sum(1 for g in self.enumerate_groups() if g is not None)


SYSTEM_GROUP = ThreadGroup("system")
MAIN_GROUP = ThreadGroup("main", SYSTEM_GROUP)


def group_of(thread: threading.Thread) -> ThreadGroup:
    """The group a thread belongs to; ``main`` unless it was placed elsewhere."""
    with _membership_lock:
        return _membership.get(thread, MAIN_GROUP)


def current_group() -> ThreadGroup:
    return group_of(threading.current_thread())


def find_root_group() -> ThreadGroup:
    """Follow parents up from the current thread's group until there are none."""
    group = current_group()
    while group.parent is not None:
        group = group.parent
    return group


def walk_groups(root: ThreadGroup) -> list[ThreadGroup]:
    """Preorder list of ``root`` and its descendants, each visited once."""
    seen: set[int] = set()
    order: list[ThreadGroup] = []
    stack = [root]
    while stack:
        group = stack.pop()
        if id(group) in seen:
            continue
        seen.add(id(group))
        order.append(group)
        children = [g for g in group.enumerate_groups() if g is not None]
        stack.extend(reversed(children))
    return order


def _extract_stack(frame: FrameType | None) -> tuple[StackFrame, ...]:
    frames = []
    while frame is not None:
        code = frame.f_code
        frames.append(
            StackFrame(
                module=frame.f_globals.get("__name__", "?"),
                function=code.co_qualname,
                filename=os.path.basename(code.co_filename),
                lineno=frame.f_lineno or 0,
            )
        )
        frame = frame.f_back
    return tuple(frames)


def _thread_state(thread: threading.Thread, stack: tuple[StackFrame, ...] | None) -> str:
    if thread.ident is None:
        return "NEW"
    if not thread.is_alive():
        return "TERMINATED"
    if stack:
        top = stack[0]
        if (top.module, top.function) in _WAIT_POINTS:
            return "WAITING"
        if top.module == "selectors" and top.function.endswith(".select"):
            return "WAITING"
    return "RUNNABLE"


def _process_priority() -> int:
    try:
        return psutil.Process().nice()
    except psutil.Error as e:
        logger.debug("priority_unavailable", error=str(e))
        return 0


class ThreadWalker:
    """
    Walks the thread-group tree and captures per-thread snapshots.

    Threads start and exit while a walk is in progress. A thread that exits
    between being listed and being inspected is still reported with whatever
    was captured; nothing here raises because of it.
    """

    def __init__(
        self,
        root_finder: Callable[[], ThreadGroup] = find_root_group,
        frame_source: Callable[[], dict[int, FrameType]] = sys._current_frames,
    ) -> None:
        """
        Initialize the ThreadWalker.

        Args:
            root_finder: Returns the group the walk starts from.
            frame_source: Returns the current frame of every running thread,
                keyed by thread ident.
        """
        self._root_finder = root_finder
        self._frame_source = frame_source

    def root(self) -> ThreadGroup:
        return self._root_finder()

    def list_groups(self, root: ThreadGroup | None = None) -> ThreadGroupNode:
        """
        Build the group tree below ``root`` (preorder, by identity).

        Walks with an explicit stack, so the tree may be deeper than the
        interpreter's recursion limit.
        """
        groups: list[ThreadGroup] = []
        children: list[list[int]] = []
        seen: set[int] = set()
        stack: list[tuple[ThreadGroup, int]] = [(root or self.root(), -1)]
        while stack:
            group, parent_index = stack.pop()
            if id(group) in seen:
                continue
            seen.add(id(group))
            index = len(groups)
            groups.append(group)
            children.append([])
            if parent_index >= 0:
                children[parent_index].append(index)
            live = [g for g in group.enumerate_groups() if g is not None]
            stack.extend((child, index) for child in reversed(live))

        # children always come after their parent, so build bottom-up
        nodes: list[ThreadGroupNode | None] = [None] * len(groups)
        for index in reversed(range(len(groups))):
            group = groups[index]
            parent = group.parent
            nodes[index] = ThreadGroupNode(
                name=group.name,
                parent_name=parent.name if parent is not None else "",
                thread_count=group.active_count(),
                group_count=group.active_group_count(),
                children=tuple(nodes[i] for i in children[index]),
            )
        return nodes[0]

    def list_threads(self) -> list[ThreadSnapshot]:
        """Snapshots of every thread reachable from the root group."""
        threads = self.root().enumerate_threads(recurse=True)
        frames = self._frame_source()
        priority = _process_priority()
        snapshots = []
        for thread in threads:
            frame = frames.get(thread.ident) if thread.ident is not None else None
            stack = _extract_stack(frame) if frame is not None else None
            snapshots.append(
                ThreadSnapshot(
                    group_name=group_of(thread).name,
                    ident=thread.ident or 0,
                    name=thread.name,
                    priority=priority,
                    state=_thread_state(thread, stack),
                    alive=thread.is_alive(),
                    daemon=thread.daemon,
                    interrupted=False,
                    stack=stack,
                )
            )
        return snapshots


def format_frame(frame: StackFrame, separator: str = ",") -> str:
    return f"{frame.module}.{frame.function}(){separator}{frame.filename}:{frame.lineno}"


def format_location(snapshot: ThreadSnapshot) -> str:
    """The current frame and its caller, or ``?,?,?,?`` without two frames."""
    stack = snapshot.stack
    if stack is None or len(stack) < 2:
        return UNKNOWN_LOCATION
    return f"{format_frame(stack[0])},{format_frame(stack[1])}"


def format_stack(snapshot: ThreadSnapshot) -> str:
    """Every frame as ``module.func();file:line``, or ``-`` if unavailable."""
    if snapshot.stack is None:
        return UNAVAILABLE_STACK
    return "".join(f"{format_frame(f, ';')} " for f in snapshot.stack)


def render_thread_details(snapshots: Iterable[ThreadSnapshot], out: TextIO) -> None:
    for s in snapshots:
        out.write(
            f"{s.group_name},{s.ident},{s.name},{s.priority},{s.state},"
            f"{'' if s.alive else 'notalive'},"
            f"{'daemon' if s.daemon else ''},"
            f"{'interrupted' if s.interrupted else ''},"
            f"{format_location(s)}\n"
        )


def render_thread_stacks(snapshots: Iterable[ThreadSnapshot], out: TextIO) -> None:
    for s in snapshots:
        out.write(f"{s.group_name} {s.ident} {format_stack(s)}\n")


def render_thread_groups(node: ThreadGroupNode, out: TextIO, indent: str = "") -> None:
    """One line per group, children indented two spaces below their parent."""
    stack = [(node, indent)]
    while stack:
        node, indent = stack.pop()
        out.write(f"{indent}{node.name},{node.parent_name},{node.thread_count},{node.group_count}\n")
        stack.extend((child, indent + "  ") for child in reversed(node.children))
