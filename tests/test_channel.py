import pytest

from hevtask.channel import (
    ChannelClosedError,
    ChannelSelect,
    channel_pair,
    channel_pair_with_buffers,
)
from hevtask.system import Task, TaskState, TaskSystem


@pytest.fixture
def system():
    with TaskSystem() as s:
        yield s


def test_sync_round_trip(system):
    chan1, chan2 = channel_pair()
    results = []

    def entry1():
        results.append(("t1 read", chan1.read(64)))
        results.append(("t1 wrote", chan1.write(b"world")))
        chan1.destroy()

    def entry2():
        results.append(("t2 wrote", chan2.write(b"hello")))
        results.append(("t2 read", chan2.read(64)))
        chan2.destroy()

    t1 = system.add(Task(entry1, priority=1))
    t2 = system.add(Task(entry2, priority=2))
    system.run()

    assert t1.state is TaskState.STOPPED
    assert t2.state is TaskState.STOPPED
    assert ("t1 read", b"hello") in results
    assert ("t2 read", b"world") in results
    assert ("t2 wrote", 5) in results
    assert ("t1 wrote", 5) in results
    assert results.index(("t1 read", b"hello")) < results.index(("t2 read", b"world"))


def test_sync_read_cuts_to_count(system):
    reader, writer = channel_pair()
    results = {}

    def read_entry():
        results["data"] = reader.read(3)

    def write_entry():
        results["size"] = writer.write(b"abcdef")

    read_task = system.add(Task(read_entry))
    write_task = system.add(Task(write_entry))
    system.run()

    assert read_task.state is TaskState.STOPPED
    assert write_task.state is TaskState.STOPPED
    assert reader.pending == 0
    assert results["data"] == b"abc"
    assert results["size"] == len(b"abcdef")


def test_buffered_fifo_without_tasks():
    a, b = channel_pair_with_buffers(8, 2)
    assert a.write(b"one") == 3
    assert a.write(b"two") == 3
    assert b.pending == 2
    assert b.read(8) == b"one"
    assert b.read(8) == b"two"
    assert b.pending == 0


def test_buffered_write_cut_to_size():
    a, b = channel_pair_with_buffers(4, 1)
    assert a.write(b"abcdef") == 4
    assert b.read(100) == b"abcd"


def test_read_after_peer_destroyed():
    a, b = channel_pair_with_buffers(4, 2)
    b.destroy()
    assert not a.active
    with pytest.raises(ChannelClosedError):
        a.read(4)


def test_pending_data_survives_peer_destroy():
    a, b = channel_pair_with_buffers(4, 2)
    b.write(b"left")
    b.destroy()
    assert a.read(4) == b"left"
    with pytest.raises(ChannelClosedError):
        a.read(4)


def test_write_after_peer_destroyed():
    a, b = channel_pair()
    a.destroy()
    with pytest.raises(ChannelClosedError):
        b.write(b"data")


def test_destroy_wakes_waiting_reader(system):
    a, b = channel_pair()
    results = []

    def reader():
        try:
            a.read(8)
        except ChannelClosedError:
            results.append("closed")

    reader_task = system.add(Task(reader))
    system.add(Task(b.destroy))
    system.run()

    assert results == ["closed"]
    assert a.active is False
    assert reader_task.state is TaskState.STOPPED


def test_destroy_fails_waiting_sync_writer(system):
    a, b = channel_pair()
    results = []

    def writer():
        try:
            a.write(b"data")
        except ChannelClosedError:
            results.append("closed")

    system.add(Task(writer))
    system.add(Task(b.destroy))
    system.run()

    assert results == ["closed"]
    assert b.pending == 1


def test_invalid_arguments():
    with pytest.raises(ValueError):
        channel_pair_with_buffers(-1, 1)
    with pytest.raises(ValueError):
        channel_pair_with_buffers(4, -1)
    a, _ = channel_pair_with_buffers(4, 1)
    with pytest.raises(ValueError):
        a.read(-1)


def test_select_empty_returns_none():
    sel = ChannelSelect()
    assert sel.select_read(0) is None
    assert sel.select_write(0) is None


def test_select_read_ready_at_add():
    a, b = channel_pair_with_buffers(4, 2)
    a.write(b"ping")
    sel = ChannelSelect()
    sel.add(b)
    assert sel.select_read(0) is b
    assert b.read(4) == b"ping"
    assert sel.select_read(0) is None


def test_select_write_until_full():
    a, b = channel_pair_with_buffers(4, 2)
    sel = ChannelSelect()
    sel.add(a)
    assert sel.select_write(0) is a
    a.write(b"1")
    assert sel.select_write(0) is a
    a.write(b"2")
    assert sel.select_write(0) is None


def test_select_remove_forgets_channel():
    a, b = channel_pair_with_buffers(4, 2)
    a.write(b"x")
    sel = ChannelSelect()
    sel.add(b)
    sel.remove(b)
    assert sel.select_read(0) is None
    assert b.read(4) == b"x"


def test_select_waits_for_readable(system):
    a1, a2 = channel_pair_with_buffers(8, 2)
    b1, b2 = channel_pair_with_buffers(8, 2)
    results = {}

    def consumer():
        sel = ChannelSelect()
        sel.add(a1)
        sel.add(b1)
        chan = sel.select_read(-1)
        results["chan"] = chan
        results["data"] = chan.read(8)

    def producer():
        b2.write(b"msg")

    system.add(Task(consumer))
    system.add(Task(producer))
    system.run()

    assert results["chan"] is b1
    assert results["data"] == b"msg"


def test_select_read_times_out(system):
    a, _ = channel_pair_with_buffers(4, 2)
    results = {}

    def consumer():
        sel = ChannelSelect()
        sel.add(a)
        results["chan"] = sel.select_read(20)

    task = system.add(Task(consumer))
    system.run()

    assert task.state is TaskState.STOPPED
    assert a.pending == 0
    assert "chan" in results
    assert results["chan"] is None