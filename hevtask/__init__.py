"""Cooperative task system: priority scheduler, I/O reactor, mutexes, conditions and channels."""

__version__ = "5.10.2"