# hevtask

A cooperative task system for Python. Tasks take turns under a fair,
priority-weighted scheduler. They can yield, sleep, wait on file descriptors
through an I/O reactor, and talk to each other through mutexes, condition
variables and channels.

Every task runs on a thread of its own. Only one task, or the scheduler, is
active at any moment, so a task is switched out only where it yields, sleeps
or waits. The package has no dependencies outside the standard library.

## Installing

```
pip install .
```

## A first program

```python
from hevtask.system import Task, TaskSystem, yield_now

def worker(name):
    for _ in range(2):
        print("hello", name)
        yield_now()

with TaskSystem() as system:
    system.add(Task(worker, "1", priority=2))
    system.add(Task(worker, "2", priority=1))
    system.run()
```

The next task to run is always the one with the lowest schedule key. Each
time a task gives up its turn, its key grows by its priority, so a task with
a lower priority value gets more turns. Priorities go from 0 to 15, and the
default is 8. Any other value raises `ValueError`.

`run()` returns once every task has finished. If a task raises an exception,
the run stops and `run()` raises that exception. If every task is waiting and
no timer or watched descriptor could wake any of them, `run()` raises
`RuntimeError`. Each thread can have at most one `TaskSystem`. Closing it,
directly or by leaving the `with` block, stops any tasks that are left.

## What is in the package

### `hevtask.system`

- `Task(entry, *args, priority=8)`: a function to run as a task. Its
  `priority` can be changed and takes effect from the task's next turn.
  `state` is a `TaskState`: `RUNNING`, `WAITING` or `STOPPED`.
- `TaskSystem`: `add(task)` (returns the task), `run()`, `wakeup(task)`,
  `add_fd(task, fd, events)`, `mod_fd(task, fd, events)`,
  `del_fd(task, fd)` and `close()`. `fd` may be an integer or any object
  with `fileno()`. A task that has watched descriptors is woken when one of
  them becomes ready.
- Functions to call from inside a task:
  - `yield_now()` lets other runnable tasks take a turn.
  - `wait_io()` waits until something wakes the current task.
  - `sleep(milliseconds)` returns 0 when the time has passed, or the
    milliseconds left if the task was woken early.
  - `wakeup(task)` makes a waiting task runnable again.
  - `current_task()` and `current_system()` return the running task and the
    thread's task system.
- `YieldType` names the two ways a task gives up its turn: `YIELD` and
  `WAITIO`.

### `hevtask.reactor`

`Reactor` reports which watched descriptors became ready. It uses
edge-triggered epoll or kqueue where the platform has them, and falls back
to level-triggered `selectors` elsewhere.

- `setup(fd, op, events, data)` takes an `Operation` (`ADD`, `MOD`, `DEL`)
  and `Events` flags (`READ`, `WRITE`, `ERROR`, `HANGUP`). It raises
  `OSError` if the operation fails.
- `wait(timeout=-1, max_events=1024)` waits up to `timeout` milliseconds.
  A negative timeout waits forever. It returns a list of
  `WaitEvent(events, data)`.
- `close()`; the reactor is also a context manager.

### `hevtask.aide`

A background daemon thread that calls handlers when their descriptors
become ready.

- `init()` starts the thread; later calls do nothing.
- `add(work)` watches a descriptor, and `remove(work)` stops watching it.
  Calling either one before `init()` raises `RuntimeError`.
- `AideWork(fd, events, handler, data=None)` describes the work. Its handler
  is called as `handler(events, data)`.

### `hevtask.mutex`

`TaskMutex` has `lock()`, `trylock()` (returns whether the mutex was taken)
and `unlock()`, and works as a context manager. A task that finds the mutex
held is parked rather than blocking its thread. An unlock wakes the most
recent waiter first.

### `hevtask.cond`

`TaskCond` works together with a `TaskMutex`.

- `wait(mutex)` waits for a signal.
- `timedwait(mutex, milliseconds)` returns `True` when signalled and `False`
  when the time ran out.
- `signal()` wakes the most recent waiter, and `broadcast()` wakes them all.

### `hevtask.channel`

- `channel_pair()` returns two connected, unbuffered ends. A writer waits
  until the reader has taken its datagram.
- `channel_pair_with_buffers(size, buffers)` returns ends that hold up to
  `buffers` datagrams of at most `size` bytes each. A writer waits only when
  the buffer is full.
- `TaskChannel.read(count)` returns one datagram, cut to at most `count`
  bytes. `write(data)` returns the number of bytes sent, and `destroy()`
  closes this end. `active` and `pending` report the channel's state.
- Reading with nothing pending, or writing, after the other end has been
  destroyed raises `ChannelClosedError`, which is a subclass of `EOFError`.
- `ChannelSelect` waits on several ends at once. It has `add(chan)`,
  `remove(chan)`, `select_read(timeout)` and `select_write(timeout)`. The
  two select methods return a ready end, or `None` on timeout.

## Demos

The demo programs show the scheduler, channels, sleeping and waking up:

```
hevtask-demo simple
hevtask-demo channel
hevtask-demo timeout
hevtask-demo wakeup
```

They can also be run from code with `hevtask.demos.run_simple(out)`,
`run_channel(out)`, `run_timeout(out)` and `run_wakeup(out)`, where `out`
is a text stream (standard output by default).

## What it does not do

The package tells a task when a descriptor is ready, but it has no
socket or file wrappers of its own: the task does the reading and writing
itself, on a non-blocking descriptor, after it is woken. There is no name
resolution and no network server in the package, beyond what a program
builds on top of `add_fd` and `wait_io`.

## Running the tests

```
pip install .[test]
pytest
```