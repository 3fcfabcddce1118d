"""Mutual exclusion between tasks of one task system."""

from __future__ import annotations

from .system import Task, current_task, wait_io, wakeup


class _Waiter:
    __slots__ = ("task",)

    def __init__(self, task: Task) -> None:
        self.task = task


class TaskMutex:
    """A lock that parks the calling task instead of blocking its thread.

    Waiters are kept as a stack: an unlock wakes the most recent waiter first.
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: list[_Waiter] = []

    @property
    def locked(self) -> bool:
        return self._locked

    def lock(self) -> None:
        """Take the mutex, waiting for it when another task holds it."""
        if self._locked:
            task = current_task()
            if task is None:
                raise RuntimeError("cannot wait for a mutex outside a task")
            node = _Waiter(task)
            self._waiters.append(node)
            while True:
                wait_io()
                if not self._locked and self._waiters and self._waiters[-1] is node:
                    break
            self._waiters.pop()
        self._locked = True

    def trylock(self) -> bool:
        """Take the mutex if it is free; return whether it was taken."""
        if self._locked:
            return False
        self._locked = True
        return True

    def unlock(self) -> None:
        """Release the mutex and wake the most recent waiter, if any."""
        self._locked = False
        if self._waiters:
            wakeup(self._waiters[-1].task)

    def __enter__(self) -> TaskMutex:
        self.lock()
        return self

    def __exit__(self, *args) -> None:
        self.unlock()