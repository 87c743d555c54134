"""
VCS Factory
===========

Turns a path into a ready VCS handle: detect the repository, pick a
backend (honouring preference and tool availability), look its
constructor up in the registry and cache the handle by path.

Usage:
    from beads_vcs.vcs import get_vcs

    vcs = get_vcs(repo_path)
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from . import registry
from .detection import (
    DetectionResult,
    detect_with_availability,
    is_git_available,
    is_jj_available,
)
from .exceptions import VCSNotFoundError
from .features import preferred_backend
from .types import VCSBackend

if TYPE_CHECKING:
    from .protocol import VCSProtocol

logger = logging.getLogger(__name__)

_cache: dict[str, VCSProtocol] = {}
_cache_lock = threading.Lock()
_cache_enabled = True
_cache_flag_lock = threading.Lock()


# =============================================================================
# Cache Management
# =============================================================================


def reset_cache() -> None:
    """Drop every cached handle."""
    with _cache_lock:
        _cache.clear()


def disable_cache() -> None:
    """Stop caching handles and drop the ones already cached."""
    global _cache_enabled
    with _cache_flag_lock:
        _cache_enabled = False
    reset_cache()


def enable_cache() -> None:
    global _cache_enabled
    with _cache_flag_lock:
        _cache_enabled = True


def is_cache_enabled() -> bool:
    with _cache_flag_lock:
        return _cache_enabled


# =============================================================================
# Factory
# =============================================================================


def _is_available(backend: VCSBackend) -> bool:
    if backend == VCSBackend.JUJUTSU:
        return is_jj_available()
    if backend == VCSBackend.GIT:
        return is_git_available()
    return False


class VCSFactory:
    """
    Builds VCS handles from paths.

    Args:
        preferred: Backend to use for colocated repositories; None reads
            the environment preference (BD_VCS).
        fallback: Backend used when nothing else is available.
        enable_cache: Whether this factory consults and fills the cache.
    """

    def __init__(
        self,
        preferred: VCSBackend | None = None,
        fallback: VCSBackend = VCSBackend.GIT,
        enable_cache: bool = True,
    ) -> None:
        self.preferred = preferred
        self.fallback = fallback
        self.enable_cache = enable_cache

    def _use_cache(self) -> bool:
        return self.enable_cache and is_cache_enabled()

    def _choose_backend(self, detection: DetectionResult) -> VCSBackend:
        if detection.backend != VCSBackend.COLOCATED:
            return detection.backend

        preferred = self.preferred or preferred_backend()
        other = VCSBackend.GIT if preferred == VCSBackend.JUJUTSU else VCSBackend.JUJUTSU
        for candidate in (preferred, other):
            if _is_available(candidate):
                return candidate
        return self.fallback

    def create(self, path: str | Path = ".") -> VCSProtocol:
        """
        Return a handle for the repository containing ``path``.

        Raises:
            NotInVCSError: No repository contains ``path``.
            VCSNotFoundError: The chosen backend's tool is missing, or no
                constructor is registered for it.
        """
        key = str(path)
        if self._use_cache():
            with _cache_lock:
                cached = _cache.get(key)
            if cached is not None:
                return cached

        detection = detect_with_availability(path)
        backend = self._choose_backend(detection)

        constructor = registry.get_constructor(backend)
        if constructor is None:
            available = ", ".join(b.value for b in registry.registered_types()) or "none"
            raise VCSNotFoundError(
                f"No VCS backend registered for {backend.value!r} (registered: {available})"
            )

        logger.debug("Creating %s handle for %s", backend.value, detection.repo_root)
        vcs = constructor(detection.repo_root)

        if self._use_cache():
            with _cache_lock:
                _cache[key] = vcs
        return vcs


# =============================================================================
# Convenience Functions
# =============================================================================


def get_vcs(path: str | Path = ".") -> VCSProtocol:
    """
    Factory function to get the VCS handle for ``path``.

    Args:
        path: Any path inside a repository (default: current directory).

    Returns:
        A VCSProtocol implementation (GitVCS or JujutsuVCS).
    """
    return VCSFactory().create(path)


def get_vcs_with_preference(preferred: VCSBackend, path: str | Path = ".") -> VCSProtocol:
    """Like get_vcs(), but with an explicit preference for colocated repositories.

    The cache is bypassed so the preference always takes effect.
    """
    return VCSFactory(preferred=preferred, enable_cache=False).create(path)


def _get_specific(backend: VCSBackend, path: str | Path) -> VCSProtocol:
    if not _is_available(backend):
        raise VCSNotFoundError(f"{backend.value} is not installed")
    constructor = registry.get_constructor(backend)
    if constructor is None:
        raise VCSNotFoundError(f"No VCS backend registered for {backend.value!r}")
    return constructor(Path(path))


def get_git(path: str | Path = ".") -> VCSProtocol:
    """Return a git handle for ``path``, bypassing detection and the cache."""
    return _get_specific(VCSBackend.GIT, path)


def get_jj(path: str | Path = ".") -> VCSProtocol:
    """Return a jj handle for ``path``, bypassing detection and the cache."""
    return _get_specific(VCSBackend.JUJUTSU, path)
