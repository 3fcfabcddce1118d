"""I/O readiness reactor on top of epoll, kqueue or the portable selectors."""

from __future__ import annotations

import enum
import errno
import select
import selectors
from dataclasses import dataclass
from typing import Any, Protocol


class Events(enum.IntFlag):
    """Readiness conditions, numbered as the poll(2) flags are."""

    NONE = 0
    READ = 0x001
    WRITE = 0x004
    ERROR = 0x008
    HANGUP = 0x010


class Operation(enum.Enum):
    """What a setup call does with a descriptor."""

    ADD = enum.auto()
    MOD = enum.auto()
    DEL = enum.auto()


@dataclass(frozen=True)
class WaitEvent:
    """One readiness report: the conditions met and the registered data."""

    events: Events
    data: Any


class _Backend(Protocol):
    def setup(self, fd: int, op: Operation, events: Events, data: Any) -> None: ...

    def wait(self, timeout: int, max_events: int) -> list[WaitEvent]: ...

    def close(self) -> None: ...


def _seconds(timeout: int) -> float | None:
    return None if timeout < 0 else timeout / 1000


class _EpollBackend:
    """Edge-triggered epoll."""

    def __init__(self) -> None:
        self._epoll = select.epoll()
        self._data: dict[int, Any] = {}
        self._to_native = (
            (Events.READ, select.EPOLLIN),
            (Events.WRITE, select.EPOLLOUT),
            (Events.ERROR, select.EPOLLERR),
        )
        self._from_native = self._to_native + ((Events.HANGUP, select.EPOLLHUP),)

    def _mask(self, events: Events) -> int:
        mask = select.EPOLLET
        for flag, native in self._to_native:
            if events & flag:
                mask |= native
        return mask

    def setup(self, fd: int, op: Operation, events: Events, data: Any) -> None:
        if op is Operation.ADD:
            self._epoll.register(fd, self._mask(events))
            self._data[fd] = data
        elif op is Operation.MOD:
            self._epoll.modify(fd, self._mask(events))
            self._data[fd] = data
        else:
            self._epoll.unregister(fd)
            self._data.pop(fd, None)

    def wait(self, timeout: int, max_events: int) -> list[WaitEvent]:
        seconds = _seconds(timeout)
        ready = self._epoll.poll(-1 if seconds is None else seconds, max_events)
        result = []
        for fd, mask in ready:
            events = Events.NONE
            for flag, native in self._from_native:
                if mask & native:
                    events |= flag
            result.append(WaitEvent(events, self._data.get(fd)))
        return result

    def close(self) -> None:
        self._epoll.close()


class _KqueueBackend:
    """kqueue with cleared (edge-triggered) filters, one per condition."""

    def __init__(self) -> None:
        self._kq = select.kqueue()
        self._data: dict[int, Any] = {}
        self._filters = (
            (Events.READ, select.KQ_FILTER_READ),
            (Events.WRITE, select.KQ_FILTER_WRITE),
        )

    def setup(self, fd: int, op: Operation, events: Events, data: Any) -> None:
        if op is not Operation.ADD:
            wanted = Events.NONE if op is Operation.DEL else events
            deletes = [filt for flag, filt in self._filters if not wanted & flag]
            failed: OSError | None = None
            failures = 0
            for filt in deletes:
                try:
                    self._kq.control(
                        [select.kevent(fd, filt, select.KQ_EV_DELETE)], 0
                    )
                except OSError as exc:
                    failed = exc
                    failures += 1
            if op is Operation.DEL:
                if failed is not None and failures == len(deletes):
                    raise failed
                self._data.pop(fd, None)
                return
        adds = [
            select.kevent(fd, filt, select.KQ_EV_ADD | select.KQ_EV_CLEAR)
            for flag, filt in self._filters
            if events & flag
        ]
        if adds:
            self._kq.control(adds, 0)
        self._data[fd] = data

    def wait(self, timeout: int, max_events: int) -> list[WaitEvent]:
        result = []
        for kev in self._kq.control(None, max_events, _seconds(timeout)):
            if kev.filter == select.KQ_FILTER_READ:
                events = Events.READ
            elif kev.filter == select.KQ_FILTER_WRITE:
                events = Events.WRITE
            else:
                events = Events.ERROR
            if kev.flags & select.KQ_EV_EOF:
                events |= Events.HANGUP
            if kev.flags & select.KQ_EV_ERROR:
                events |= Events.ERROR
            result.append(WaitEvent(events, self._data.get(kev.ident)))
        return result

    def close(self) -> None:
        self._kq.close()


class _SelectorBackend:
    """Level-triggered fallback for platforms without epoll or kqueue."""

    def __init__(self) -> None:
        self._selector = selectors.DefaultSelector()

    @staticmethod
    def _mask(events: Events) -> int:
        mask = 0
        if events & Events.READ:
            mask |= selectors.EVENT_READ
        if events & Events.WRITE:
            mask |= selectors.EVENT_WRITE
        # Errors are reported through readability here.
        return mask or selectors.EVENT_READ

    def setup(self, fd: int, op: Operation, events: Events, data: Any) -> None:
        try:
            if op is Operation.ADD:
                self._selector.register(fd, self._mask(events), data)
            elif op is Operation.MOD:
                self._selector.modify(fd, self._mask(events), data)
            else:
                self._selector.unregister(fd)
        except KeyError as exc:
            code = errno.EEXIST if op is Operation.ADD else errno.ENOENT
            raise OSError(code, f"cannot {op.name.lower()} descriptor {fd}") from exc

    def wait(self, timeout: int, max_events: int) -> list[WaitEvent]:
        result = []
        for key, mask in self._selector.select(_seconds(timeout))[:max_events]:
            events = Events.NONE
            if mask & selectors.EVENT_READ:
                events |= Events.READ
            if mask & selectors.EVENT_WRITE:
                events |= Events.WRITE
            result.append(WaitEvent(events, key.data))
        return result

    def close(self) -> None:
        self._selector.close()


def _make_backend() -> _Backend:
    if hasattr(select, "epoll"):
        return _EpollBackend()
    if hasattr(select, "kqueue"):
        return _KqueueBackend()
    return _SelectorBackend()


class Reactor:
    """Watches descriptors and reports which of them became ready."""

    def __init__(self) -> None:
        self._backend = _make_backend()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("reactor is closed")

    def setup(self, fd, op: Operation, events=Events.NONE, data: Any = None) -> None:
        """Add, modify or delete the watch on ``fd``; raises OSError on failure."""
        self._check_open()
        if not isinstance(fd, int):
            fd = fd.fileno()
        events = Events(events)
        if op is Operation.DEL:
            events, data = Events.NONE, None
        self._backend.setup(fd, Operation(op), events, data)

    def wait(self, timeout: int = -1, max_events: int = 1024) -> list[WaitEvent]:
        """Wait up to ``timeout`` milliseconds (negative: forever) for readiness."""
        self._check_open()
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        return self._backend.wait(timeout, max_events)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._backend.close()

    def __enter__(self) -> Reactor:
        return self

    def __exit__(self, *args) -> None:
        self.close()