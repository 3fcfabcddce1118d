"""Small demonstration programs for the task system."""

from __future__ import annotations

import argparse
import struct
import sys
from dataclasses import dataclass
from typing import Callable, TextIO

from .channel import TaskChannel, channel_pair
from .system import Task, TaskSystem, sleep, wakeup, yield_now

_ARGS_HEADER = struct.Struct("<i")
_ARGS_MAX = 256


def _output(out: TextIO | None) -> TextIO:
    return sys.stdout if out is None else out


def run_simple(out: TextIO | None = None) -> None:
    """Two tasks take turns printing, yielding after every line."""
    out = _output(out)

    def say(word: str) -> None:
        for _ in range(2):
            print(word, file=out)
            yield_now()

    with TaskSystem() as system:
        system.add(Task(say, "hello 1", priority=2))
        system.add(Task(say, "hello 2", priority=1))
        system.run()


@dataclass
class _TaskArgs:
    type: int
    command: str

    def pack(self) -> bytes:
        return _ARGS_HEADER.pack(self.type) + self.command.encode()

    @classmethod
    def unpack(cls, data: bytes) -> _TaskArgs:
        (kind,) = _ARGS_HEADER.unpack_from(data)
        return cls(kind, data[_ARGS_HEADER.size:].decode())


def run_channel(out: TextIO | None = None) -> None:
    """Two tasks exchange one message each way over a channel pair."""
    out = _output(out)

    def show(args: _TaskArgs) -> None:
        print(f"type: {args.type} command: {args.command}", file=out)

    def responder(chan: TaskChannel) -> None:
        show(_TaskArgs.unpack(chan.read(_ARGS_MAX)))
        chan.write(_TaskArgs(2, "world").pack())
        chan.destroy()

    def initiator(chan: TaskChannel) -> None:
        chan.write(_TaskArgs(1, "hello").pack())
        show(_TaskArgs.unpack(chan.read(_ARGS_MAX)))
        chan.destroy()

    first, second = channel_pair()
    with TaskSystem() as system:
        system.add(Task(responder, first, priority=1))
        system.add(Task(initiator, second, priority=2))
        system.run()


def run_timeout(out: TextIO | None = None) -> None:
    """One task sleeps for a second and reports the timeout."""
    out = _output(out)
    interval = 1000

    def entry() -> None:
        print(f"waiting for timeout {interval}ms ...", file=out)
        sleep(interval)
        print("timeout", file=out)

    with TaskSystem() as system:
        system.add(Task(entry))
        system.run()


def run_wakeup(out: TextIO | None = None) -> None:
    """A long sleep cut short by another task waking the sleeper."""
    out = _output(out)

    def sleeper() -> None:
        interval = 5000
        print(f"task1: waiting for timeout {interval}ms ...", file=out)
        left = sleep(interval)
        if left == 0:
            print("task1: timeout", file=out)
        else:
            print(f"task1: awake now, left: {left}ms", file=out)

    def waker(target: Task) -> None:
        interval = 1000
        print(f"task2: wakeup task1 after {interval}ms...", file=out)
        sleep(interval)
        print("task2: wakeup task1 ...", file=out)
        wakeup(target)

    with TaskSystem() as system:
        task1 = system.add(Task(sleeper))
        system.add(Task(waker, task1, priority=1))
        system.run()


_DEMOS: dict[str, Callable[[TextIO | None], None]] = {
    "simple": run_simple,
    "channel": run_channel,
    "timeout": run_timeout,
    "wakeup": run_wakeup,
}


def main(argv: list[str] | None = None) -> int:
    """Run one demonstration by name and print its output."""
    parser = argparse.ArgumentParser(
        prog="hevtask-demo", description="Run a task system demonstration."
    )
    parser.add_argument("demo", choices=sorted(_DEMOS))
    options = parser.parse_args(argv)
    _DEMOS[options.demo](sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())