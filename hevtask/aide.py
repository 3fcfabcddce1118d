"""Background thread that runs handlers when watched descriptors become ready."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from .reactor import Events, Operation, Reactor

_log = logging.getLogger(__name__)

# Bounded so that registrations made while waiting are seen by every backend.
_WAIT_MS = 100
_BATCH = 256

_lock = threading.Lock()
_reactor: Reactor | None = None
_thread: threading.Thread | None = None


@dataclass(eq=False)
class AideWork:
    """A descriptor to watch and the handler called with its ready events."""

    fd: int
    events: Events
    handler: Callable[[Events, Any], None]
    data: Any = None


def _run(reactor: Reactor) -> None:
    while True:
        for event in reactor.wait(_WAIT_MS, _BATCH):
            work = event.data
            if not isinstance(work, AideWork):
                continue
            try:
                work.handler(event.events, work.data)
            except Exception:
                _log.exception("aide handler for descriptor %d failed", work.fd)


def init() -> None:
    """Start the aide thread once; later calls do nothing."""
    global _reactor, _thread
    if _reactor is not None:
        return
    with _lock:
        if _reactor is None:
            reactor = Reactor()
            thread = threading.Thread(
                target=_run, args=(reactor,), name="hevtask-aide", daemon=True
            )
            thread.start()
            _thread = thread
            _reactor = reactor


def _require() -> Reactor:
    if _reactor is None:
        raise RuntimeError("aide is not initialised")
    return _reactor


def add(work: AideWork) -> None:
    """Watch ``work.fd`` for ``work.events``; raises OSError on failure."""
    _require().setup(work.fd, Operation.ADD, work.events, work)


def remove(work: AideWork) -> None:
    """Stop watching ``work.fd``; raises OSError if it was not watched."""
    _require().setup(work.fd, Operation.DEL, Events.NONE, None)