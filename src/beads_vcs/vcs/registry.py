"""
Backend Registry
================

Maps a VCSBackend tag to the constructor that builds a handle for a
repository path. Backend modules register themselves when imported; the
factory only ever looks constructors up.

Lookups take a shared lock and registration an exclusive one, so
concurrent factories never block each other on reads.
"""

from __future__ import annotations

import importlib
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import RegistryError
from .types import VCSBackend

if TYPE_CHECKING:
    from .protocol import VCSProtocol

BackendConstructor = Callable[[Path], "VCSProtocol"]

_BUILTIN_BACKENDS = ("beads_vcs.vcs.git", "beads_vcs.vcs.jujutsu")


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writing = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writing:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writing or self._readers:
                self._cond.wait()
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


_lock = _ReadWriteLock()
_constructors: dict[VCSBackend, BackendConstructor] = {}


def register(backend: VCSBackend, constructor: BackendConstructor | None) -> None:
    """
    Register the constructor for ``backend``.

    Raises:
        RegistryError: ``constructor`` is None or ``backend`` is already registered.
    """
    if constructor is None:
        raise RegistryError(f"constructor for {backend.value!r} is None")
    with _lock.write():
        if backend in _constructors:
            raise RegistryError(f"backend {backend.value!r} is already registered")
        _constructors[backend] = constructor


def get_constructor(backend: VCSBackend) -> BackendConstructor | None:
    """Return the constructor registered for ``backend``, or None."""
    with _lock.read():
        return _constructors.get(backend)


def is_registered(backend: VCSBackend) -> bool:
    with _lock.read():
        return backend in _constructors


def registered_types() -> list[VCSBackend]:
    """Return every registered tag, in registration order."""
    with _lock.read():
        return list(_constructors)


def unregister_all() -> None:
    """Remove every registration. For testing purposes only."""
    with _lock.write():
        _constructors.clear()


def ensure_registered() -> None:
    """Re-register the built-in backends after unregister_all()."""
    for module_name in _BUILTIN_BACKENDS:
        module = importlib.import_module(module_name)
        module.register_backend()
