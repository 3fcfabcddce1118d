"""Condition variables for tasks, used together with a task mutex."""

from __future__ import annotations

from .mutex import TaskMutex
from .system import Task, current_task, sleep, wait_io, wakeup


class _Waiter:
    __slots__ = ("task",)

    def __init__(self, task: Task) -> None:
        self.task: Task | None = task


class TaskCond:
    """A condition that tasks wait on; the most recent waiter is signalled first."""

    def __init__(self) -> None:
        self._waiters: list[_Waiter] = []

    def _enqueue(self) -> _Waiter:
        task = current_task()
        if task is None:
            raise RuntimeError("cannot wait on a condition outside a task")
        node = _Waiter(task)
        self._waiters.append(node)
        return node

    def wait(self, mutex: TaskMutex) -> None:
        """Release ``mutex``, wait for a signal, then take ``mutex`` again."""
        node = self._enqueue()
        mutex.unlock()
        while True:
            wait_io()
            if node.task is None:
                break
        mutex.lock()

    def timedwait(self, mutex: TaskMutex, milliseconds: int) -> bool:
        """Like :meth:`wait`, giving up after ``milliseconds``.

        Returns True when signalled and False when the time ran out.
        """
        node = self._enqueue()
        mutex.unlock()
        while milliseconds > 0 and node.task is not None:
            milliseconds = sleep(milliseconds)
        mutex.lock()
        if node.task is not None:
            self._waiters.remove(node)
            return False
        return True

    def signal(self) -> None:
        """Wake one waiting task."""
        if self._waiters:
            node = self._waiters.pop()
            wakeup(node.task)
            node.task = None

    def broadcast(self) -> None:
        """Wake every waiting task."""
        while self._waiters:
            node = self._waiters.pop()
            wakeup(node.task)
            node.task = None