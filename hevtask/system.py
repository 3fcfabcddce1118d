"""Cooperative task scheduler.

Every task runs on its own thread, but only one of them (or the scheduler
itself) holds the baton at any moment, so tasks switch exactly where they
yield. The next task to run is always the one with the lowest schedule key.
A task's key grows by its priority each time it gives up the baton. A lower
priority number therefore earns a larger share of turns.
"""

from __future__ import annotations

import bisect
import enum
import heapq
import itertools
import math
import threading
import time
from typing import Any, Callable

from .reactor import Events, Operation, Reactor

VERSION = (5, 10, 2)

PRIORITY_MIN = 0
PRIORITY_MAX = 15
PRIORITY_DEFAULT = 8

_POLL_BATCH = 1024
_KILL_JOIN_SECONDS = 5.0


class TaskState(enum.Enum):
    """Where a task stands with its scheduler."""

    RUNNING = enum.auto()
    WAITING = enum.auto()
    STOPPED = enum.auto()


class YieldType(enum.Enum):
    """Why a task gives up the baton."""

    YIELD = enum.auto()
    WAITIO = enum.auto()


class _Switch(enum.Enum):
    YIELD = enum.auto()
    WAITIO = enum.auto()
    REMOVE = enum.auto()


class _TaskKilled(BaseException):
    """Unwinds a task whose system was closed under it."""


class _Local(threading.local):
    task: Task | None = None
    system: TaskSystem | None = None


_local = _Local()


def _check_priority(priority: int) -> int:
    if not PRIORITY_MIN <= priority <= PRIORITY_MAX:
        raise ValueError(
            f"priority must be between {PRIORITY_MIN} and {PRIORITY_MAX}, "
            f"got {priority}"
        )
    return priority


def _fileno(fd) -> int:
    return fd if isinstance(fd, int) else fd.fileno()


class Task:
    """A function to run as a task, with its arguments and priority."""

    def __init__(
        self, entry: Callable[..., Any], *args: Any, priority: int = PRIORITY_DEFAULT
    ) -> None:
        if not callable(entry):
            raise TypeError("task entry must be callable")
        self.entry = entry
        self.args = args
        self.exception: BaseException | None = None
        self._next_priority = _check_priority(priority)
        self._priority = self._next_priority
        self._sched_key = self._next_priority
        self._state = TaskState.STOPPED
        self._system: TaskSystem | None = None
        self._queued: tuple[int, int, Task] | None = None
        self._thread: threading.Thread | None = None
        self._resume = threading.Semaphore(0)
        self._killed = False
        self._fds: set[int] = set()

    @property
    def priority(self) -> int:
        """The priority the task gets from its next turn on."""
        return self._next_priority

    @priority.setter
    def priority(self, value: int) -> None:
        self._next_priority = _check_priority(value)

    @property
    def state(self) -> TaskState:
        return self._state

    def __repr__(self) -> str:
        name = getattr(self.entry, "__name__", repr(self.entry))
        return f"<Task {name} {self._state.name.lower()} priority={self._next_priority}>"


class _Timer:
    """Deadlines of sleeping tasks, earliest first."""

    def __init__(self) -> None:
        self._heap: list[tuple[float, int, list]] = []
        self._seq = itertools.count()

    def add(self, deadline: float, task: Task) -> list:
        handle = [task, True]
        heapq.heappush(self._heap, (deadline, next(self._seq), handle))
        return handle

    @staticmethod
    def cancel(handle: list) -> None:
        handle[1] = False

    def _prune(self) -> None:
        while self._heap and not self._heap[0][2][1]:
            heapq.heappop(self._heap)

    def timeout(self) -> int:
        """Milliseconds to the next deadline, or -1 when none is pending."""
        self._prune()
        if not self._heap:
            return -1
        left = self._heap[0][0] - time.monotonic()
        return max(0, math.ceil(left * 1000))

    def expired(self) -> list[Task]:
        now = time.monotonic()
        tasks = []
        self._prune()
        while self._heap and self._heap[0][0] <= now:
            _, _, handle = heapq.heappop(self._heap)
            if handle[1]:
                handle[1] = False
                tasks.append(handle[0])
            self._prune()
        return tasks


class TaskSystem:
    """Runs tasks on the calling thread's behalf; one system per thread."""

    def __init__(self) -> None:
        if _local.system is not None:
            raise RuntimeError("this thread already has a task system")
        self._reactor = Reactor()
        self._timer = _Timer()
        self._queue: list[tuple[int, int, Task]] = []
        self._seq = itertools.count()
        self._tasks: set[Task] = set()
        self._fds: dict[int, Task] = {}
        self._total = 0
        self._running_count = 0
        self._current: Task | None = None
        self._kernel = threading.Semaphore(0)
        self._switch_type = _Switch.YIELD
        self._running = False
        self._closed = False
        _local.system = self

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("task system is closed")

    def _check_owner(self, task: Task) -> None:
        if task._system is not self:
            raise RuntimeError("task does not belong to this system")

    # run queue

    def _min_key(self) -> int:
        return self._queue[0][0] if self._queue else 0

    def _link(self, task: Task) -> None:
        entry = (task._sched_key, next(self._seq), task)
        task._queued = entry
        bisect.insort(self._queue, entry)

    def _unlink(self, task: Task) -> None:
        entry = task._queued
        index = bisect.bisect_left(self._queue, entry[:2])
        del self._queue[index]
        task._queued = None

    def _insert(self, task: Task) -> None:
        task._state = TaskState.RUNNING
        task._priority = task._next_priority
        self._link(task)
        self._running_count += 1

    def _reinsert_current(self) -> None:
        task = self._current
        task._priority = task._next_priority
        self._unlink(task)
        self._link(task)

    def _remove_current(self, state: TaskState) -> None:
        task = self._current
        task._state = state
        self._unlink(task)
        self._running_count -= 1
        if state is TaskState.STOPPED:
            self._total -= 1
            self._tasks.discard(task)
            self._drop_fds(task)
        else:
            task._sched_key = task._next_priority

    def _update_sched_key(self) -> None:
        task = self._current
        task._sched_key += task._priority

    def _drop_fds(self, task: Task) -> None:
        for fd in task._fds:
            if self._fds.get(fd) is task:
                del self._fds[fd]
                try:
                    self._reactor.setup(fd, Operation.DEL)
                except OSError:
                    pass
        task._fds.clear()

    # waking

    def _wakeup(self, task: Task) -> None:
        if task._state is TaskState.RUNNING:
            return
        if task._state is TaskState.STOPPED:
            raise RuntimeError("cannot wake a stopped task")
        task._sched_key += self._min_key()
        self._insert(task)

    def _io_poll(self, timeout: int) -> None:
        if timeout < 0:
            timeout = self._timer.timeout()
            if timeout < 0 and not self._fds:
                raise RuntimeError("every task is waiting and nothing can wake one")
        for event in self._reactor.wait(timeout, _POLL_BATCH):
            task = event.data
            if isinstance(task, Task) and task._state is TaskState.WAITING:
                self._wakeup(task)
        for task in self._timer.expired():
            if task._state is TaskState.WAITING:
                self._wakeup(task)

    def _pick_current_task(self) -> None:
        if self._running_count < self._total:
            if self._running_count:
                self._io_poll(0)
            else:
                while not self._running_count:
                    self._io_poll(-1)
        self._current = self._queue[0][2]

    # switching

    def _bootstrap(self, task: Task) -> None:
        _local.task = task
        _local.system = self
        try:
            task.entry(*task.args)
        except _TaskKilled:
            return
        except BaseException as exc:
            task.exception = exc
        self._switch_type = _Switch.REMOVE
        self._kernel.release()

    def _switch_to(self, task: Task) -> None:
        if task._thread is None:
            task._thread = threading.Thread(
                target=self._bootstrap, args=(task,), name=f"hevtask-{id(task):x}",
                daemon=True,
            )
            task._thread.start()
        else:
            task._resume.release()

    # public interface

    def add(self, task: Task) -> Task:
        """Hand ``task`` to this system; it runs once the system does."""
        self._check_open()
        if task._system is not None:
            raise RuntimeError("task has already been added to a system")
        task._system = self
        if self._current is not None:
            task._sched_key += self._min_key()
        self._insert(task)
        self._total += 1
        self._tasks.add(task)
        return task

    def run(self) -> None:
        """Run tasks until every one of them has returned.

        An exception raised by a task stops the run and is raised here.
        """
        self._check_open()
        if _local.task is not None:
            raise RuntimeError("run() cannot be called from a task")
        if self._running:
            raise RuntimeError("task system is already running")
        self._running = True
        try:
            while self._total:
                self._pick_current_task()
                task = self._current
                self._switch_to(task)
                self._kernel.acquire()
                kind = self._switch_type
                if kind is _Switch.REMOVE:
                    self._remove_current(TaskState.STOPPED)
                    if task.exception is not None:
                        raise task.exception
                elif kind is _Switch.YIELD:
                    self._update_sched_key()
                    self._reinsert_current()
                else:
                    self._update_sched_key()
                    self._remove_current(TaskState.WAITING)
        finally:
            self._current = None
            self._running = False

    def wakeup(self, task: Task) -> None:
        """Make a waiting task runnable again."""
        self._check_owner(task)
        self._wakeup(task)

    def add_fd(self, task: Task, fd, events) -> None:
        """Wake ``task`` when ``fd`` becomes ready for ``events``."""
        self._check_open()
        self._check_owner(task)
        fd = _fileno(fd)
        self._reactor.setup(fd, Operation.ADD, Events(events), task)
        self._fds[fd] = task
        task._fds.add(fd)

    def mod_fd(self, task: Task, fd, events) -> None:
        """Change the events, or the task, a watched ``fd`` reports to."""
        self._check_open()
        self._check_owner(task)
        fd = _fileno(fd)
        self._reactor.setup(fd, Operation.MOD, Events(events), task)
        previous = self._fds.get(fd)
        if previous is not None and previous is not task:
            previous._fds.discard(fd)
        self._fds[fd] = task
        task._fds.add(fd)

    def del_fd(self, task: Task, fd) -> None:
        """Stop watching ``fd``."""
        self._check_open()
        self._check_owner(task)
        fd = _fileno(fd)
        self._reactor.setup(fd, Operation.DEL)
        if self._fds.get(fd) is not None:
            self._fds.pop(fd)._fds.discard(fd)
        task._fds.discard(fd)

    def close(self) -> None:
        """Stop every task left and release the system's resources."""
        if self._closed:
            return
        if _local.task is not None:
            raise RuntimeError("close() cannot be called from a task")
        self._closed = True
        for task in list(self._tasks):
            thread = task._thread
            if thread is not None and thread.is_alive():
                task._killed = True
                task._resume.release()
                thread.join(_KILL_JOIN_SECONDS)
            task._state = TaskState.STOPPED
            task._queued = None
            task._fds.clear()
        self._tasks.clear()
        self._queue.clear()
        self._fds.clear()
        self._total = 0
        self._running_count = 0
        self._reactor.close()
        if _local.system is self:
            _local.system = None

    def __enter__(self) -> TaskSystem:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def current_task() -> Task | None:
    """The task running on this thread, or None outside tasks."""
    return _local.task


def current_system() -> TaskSystem | None:
    """The task system of this thread, or None if there is none."""
    return _local.system


def _require_task() -> Task:
    task = _local.task
    if task is None:
        raise RuntimeError("not called from a task")
    return task


def _switch(kind: _Switch) -> None:
    task = _require_task()
    if task._killed:
        raise _TaskKilled
    system = task._system
    system._switch_type = kind
    system._kernel.release()
    task._resume.acquire()
    if task._killed:
        raise _TaskKilled


def yield_now() -> None:
    """Let other runnable tasks take a turn."""
    _switch(_Switch.YIELD)


def wait_io() -> None:
    """Wait until something wakes the current task."""
    _switch(_Switch.WAITIO)


def sleep(milliseconds: int) -> int:
    """Sleep for ``milliseconds``; return the milliseconds left if woken early."""
    task = _require_task()
    if milliseconds <= 0:
        return 0
    timer = task._system._timer
    deadline = time.monotonic() + milliseconds / 1000
    handle = timer.add(deadline, task)
    try:
        _switch(_Switch.WAITIO)
    finally:
        timer.cancel(handle)
    left = deadline - time.monotonic()
    if left <= 0:
        return 0
    return min(milliseconds, math.ceil(left * 1000))


def wakeup(task: Task) -> None:
    """Make a waiting task runnable again."""
    if task._system is None:
        raise RuntimeError("task has not been added to a system")
    task._system.wakeup(task)