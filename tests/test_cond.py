import time

import pytest

from hevtask.cond import TaskCond
from hevtask.mutex import TaskMutex
from hevtask.system import Task, TaskState, TaskSystem, yield_now


def test_wait_outside_task_raises():
    cond = TaskCond()
    mutex = TaskMutex()
    mutex.lock()
    with pytest.raises(RuntimeError):
        cond.wait(mutex)
    assert mutex.locked


def test_signal_wakes_waiter():
    log = []
    state = {"ready": False}
    mutex = TaskMutex()
    cond = TaskCond()

    def waiter():
        mutex.lock()
        while not state["ready"]:
            cond.wait(mutex)
        log.append(("woken", mutex.locked))
        mutex.unlock()

    def signaller():
        mutex.lock()
        state["ready"] = True
        cond.signal()
        mutex.unlock()

    with TaskSystem() as system:
        waiter_task = system.add(Task(waiter))
        system.add(Task(signaller))
        system.run()

    assert log == [("woken", True)]
    assert mutex.locked is False
    assert waiter_task.state is TaskState.STOPPED


def test_signal_wakes_most_recent_waiter_first():
    log = []
    mutex = TaskMutex()
    cond = TaskCond()

    def make(name):
        def waiter():
            mutex.lock()
            cond.wait(mutex)
            log.append(name)
            mutex.unlock()

        return waiter

    def signaller():
        cond.signal()
        yield_now()
        cond.signal()

    with TaskSystem() as system:
        tasks = [
            system.add(Task(make("w1"))),
            system.add(Task(make("w2"))),
            system.add(Task(signaller)),
        ]
        system.run()

    assert log == ["w2", "w1"]
    assert mutex.locked is False
    assert all(t.state is TaskState.STOPPED for t in tasks)


def test_broadcast_wakes_every_waiter():
    woken = []
    mutex = TaskMutex()
    cond = TaskCond()

    def make(name):
        def waiter():
            mutex.lock()
            cond.wait(mutex)
            woken.append(name)
            mutex.unlock()

        return waiter

    def broadcaster():
        mutex.lock()
        cond.broadcast()
        mutex.unlock()

    names = ["x", "y", "z"]
    with TaskSystem() as system:
        tasks = [system.add(Task(make(name))) for name in names]
        tasks.append(system.add(Task(broadcaster)))
        system.run()

    assert sorted(woken) == names
    assert mutex.locked is False
    assert all(t.state is TaskState.STOPPED for t in tasks)


def test_timedwait_times_out_with_mutex_held():
    results = []
    mutex = TaskMutex()
    cond = TaskCond()

    def waiter():
        mutex.lock()
        start = time.monotonic()
        signalled = cond.timedwait(mutex, 20)
        results.append((signalled, mutex.locked, time.monotonic() - start))
        mutex.unlock()

    with TaskSystem() as system:
        task = system.add(Task(waiter))
        system.run()

    assert task.state is TaskState.STOPPED
    assert mutex.locked is False
    signalled, locked, elapsed = results[0]
    assert signalled is False
    assert locked is True
    assert elapsed >= 0.015


def test_timedwait_zero_returns_false():
    results = []
    mutex = TaskMutex()
    cond = TaskCond()

    def waiter():
        mutex.lock()
        results.append(cond.timedwait(mutex, 0))
        mutex.unlock()

    with TaskSystem() as system:
        task = system.add(Task(waiter))
        system.run()

    assert results == [False]
    assert mutex.locked is False
    assert task.state is TaskState.STOPPED


def test_timedwait_signalled_returns_true_early():
    results = []
    mutex = TaskMutex()
    cond = TaskCond()

    def waiter():
        mutex.lock()
        start = time.monotonic()
        results.append(cond.timedwait(mutex, 5000))
        results.append(time.monotonic() - start)
        mutex.unlock()

    def signaller():
        mutex.lock()
        cond.signal()
        mutex.unlock()

    with TaskSystem() as system:
        waiter_task = system.add(Task(waiter))
        system.add(Task(signaller))
        system.run()

    assert results[0] is True
    assert results[1] < 4.0
    assert mutex.locked is False
    assert waiter_task.state is TaskState.STOPPED


def test_timed_out_waiter_is_not_signalled_later():
    results = []
    mutex = TaskMutex()
    cond = TaskCond()

    def waiter():
        mutex.lock()
        results.append(cond.timedwait(mutex, 10))
        cond.signal()
        results.append(cond.timedwait(mutex, 10))
        mutex.unlock()

    with TaskSystem() as system:
        task = system.add(Task(waiter))
        system.run()

    assert results == [False, False]
    assert mutex.locked is False
    assert task.state is TaskState.STOPPED