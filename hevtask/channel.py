"""Pairs of connected channels that carry datagrams between tasks."""

from __future__ import annotations

from .system import Task, TaskState, current_task, sleep, wait_io, wakeup


class ChannelClosedError(EOFError):
    """The other end of the channel has been destroyed."""


def _wake(task: Task | None) -> None:
    # A task that has already returned has nothing left to wait for.
    if task is not None and task.state is not TaskState.STOPPED:
        wakeup(task)


class TaskChannel:
    """One end of a channel pair.

    Data written to one end is read from the other, one datagram per read.
    An unbuffered channel hands the written data straight over and the writer
    waits until the reader has taken it. A buffered channel copies up to its
    datagram size into a ring of slots and the writer waits only when the
    ring is full.
    """

    def __init__(self, max_size: int, max_count: int) -> None:
        self._peer: TaskChannel | None = None
        self._task: Task | None = None
        self._select: ChannelSelect | None = None
        self._read_used = False
        self._write_used = False
        self._buffers: list[bytes] = [b""] * max_count
        self._rd_idx = 0
        self._wr_idx = 0
        self._max_size = max_size
        self._use_count = 0
        self._max_count = max_count

    @property
    def active(self) -> bool:
        """Whether the other end still exists."""
        return self._peer is not None

    @property
    def pending(self) -> int:
        """Datagrams waiting to be read from this end."""
        return self._use_count

    def _readable(self) -> bool:
        return self._use_count != 0

    def _writable(self) -> bool:
        return self._use_count < self._max_count

    def _select_writable(self) -> bool:
        return self._use_count < self._max_count - 1

    def _wait(self) -> None:
        self._task = current_task()
        wait_io()

    def read(self, count: int) -> bytes:
        """Read one datagram, cut to at most ``count`` bytes.

        Waits while nothing is pending; raises ChannelClosedError when
        nothing is pending and the other end is gone.
        """
        if count < 0:
            raise ValueError("count must not be negative")
        while not self._readable():
            if not self.active:
                raise ChannelClosedError("channel peer has been destroyed")
            self._wait()

        data = self._buffers[self._rd_idx]
        self._buffers[self._rd_idx] = b""
        self._rd_idx = (self._rd_idx + 1) % self._max_count
        data = data[:count]

        if self._use_count == self._max_count:
            peer = self._peer
            if peer is not None:
                if peer._select is not None:
                    peer._select._add_write(peer)
                _wake(peer._task)

        self._use_count -= 1
        if self._select is not None and not self._readable():
            self._select._del_read(self)

        return data

    def write(self, data) -> int:
        """Send ``data`` as one datagram; return the number of bytes sent.

        Buffered channels cut the datagram to their size. Raises
        ChannelClosedError if the other end is gone before the datagram is
        taken over.
        """
        peer = self._peer
        if peer is None:
            raise ChannelClosedError("channel peer has been destroyed")
        data = bytes(data)

        while not peer._writable():
            if not self.active:
                raise ChannelClosedError("channel peer has been destroyed")
            self._wait()

        slot = peer._wr_idx
        peer._wr_idx = (peer._wr_idx + 1) % peer._max_count
        if peer._max_count > 1:
            data = data[: self._max_size]
        peer._buffers[slot] = data
        size = len(data)

        if peer._use_count == 0:
            if peer._select is not None:
                peer._select._add_read(peer)
            _wake(peer._task)

        peer._use_count += 1
        if self._select is not None and not peer._select_writable():
            self._select._del_write(self)

        while not peer._writable():
            if not self.active:
                raise ChannelClosedError("channel peer has been destroyed")
            self._wait()

        return size

    def destroy(self) -> None:
        """Close this end, waking whoever waits on either end."""
        peer = self._peer
        if peer is not None:
            peer._peer = None
            _wake(peer._task)
        _wake(self._task)
        self._peer = None


def channel_pair() -> tuple[TaskChannel, TaskChannel]:
    """Create two connected, unbuffered channel ends."""
    return channel_pair_with_buffers(0, 0)


def channel_pair_with_buffers(size: int, buffers: int) -> tuple[TaskChannel, TaskChannel]:
    """Create two connected ends holding up to ``buffers`` datagrams of ``size`` bytes.

    With ``buffers`` of zero the channel is unbuffered.
    """
    if size < 0:
        raise ValueError("size must not be negative")
    if buffers < 0:
        raise ValueError("buffers must not be negative")
    count = buffers + 1
    first = TaskChannel(size, count)
    second = TaskChannel(size, count)
    first._peer = second
    second._peer = first
    return first, second


class ChannelSelect:
    """Waits on several channel ends for one that can be read or written."""

    def __init__(self) -> None:
        self._channels: list[TaskChannel] = []
        self._read_list: list[TaskChannel] = []
        self._write_list: list[TaskChannel] = []

    def _add_read(self, chan: TaskChannel) -> None:
        if chan._read_used:
            return
        chan._read_used = True
        self._read_list.append(chan)

    def _del_read(self, chan: TaskChannel) -> None:
        if not chan._read_used:
            return
        chan._read_used = False
        self._read_list.remove(chan)

    def _add_write(self, chan: TaskChannel) -> None:
        if chan._write_used:
            return
        chan._write_used = True
        self._write_list.append(chan)

    def _del_write(self, chan: TaskChannel) -> None:
        if not chan._write_used:
            return
        chan._write_used = False
        self._write_list.remove(chan)

    def add(self, chan: TaskChannel) -> None:
        """Watch ``chan`` on behalf of the current task."""
        chan._select = self
        chan._task = current_task()
        self._channels.append(chan)
        if chan._readable():
            self._add_read(chan)
        peer = chan._peer
        if peer is not None and peer._select_writable():
            self._add_write(chan)

    def remove(self, chan: TaskChannel) -> None:
        """Stop watching ``chan``."""
        self._del_read(chan)
        self._del_write(chan)
        self._channels.remove(chan)
        chan._task = None
        chan._select = None

    def _select(self, ready: list[TaskChannel], timeout: int) -> TaskChannel | None:
        if not self._channels:
            return None
        forever = timeout < 0
        milliseconds = timeout
        while not ready and (forever or milliseconds):
            if forever:
                wait_io()
            else:
                milliseconds = sleep(milliseconds)
        return ready[0] if ready else None

    def select_read(self, timeout: int) -> TaskChannel | None:
        """Return a readable end, waiting up to ``timeout`` ms (negative: forever)."""
        return self._select(self._read_list, timeout)

    def select_write(self, timeout: int) -> TaskChannel | None:
        """Return a writable end, waiting up to ``timeout`` ms (negative: forever)."""
        return self._select(self._write_list, timeout)