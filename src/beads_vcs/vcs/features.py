"""Feature flags and backend preference read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .types import VCSBackend

VCS_PREFERENCE_ENV_VAR = "BD_VCS"
ABSTRACTION_ENV_VAR = "BD_VCS_ABSTRACTION"
JJ_ENV_VAR = "BD_VCS_JJ"
PREFER_JJ_ENV_VAR = "BD_VCS_PREFER_JJ"
TRACE_ENV_VAR = "BD_VCS_LOG"

_TRUTHY_VALUES = {"1", "t", "true", "yes", "y", "on"}
_FALSY_VALUES = {"0", "f", "false", "no", "n", "off"}


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable, falling back to ``default``."""
    raw_value = os.getenv(name, "").strip().lower()
    if raw_value in _TRUTHY_VALUES:
        return True
    if raw_value in _FALSY_VALUES:
        return False
    return default


def is_abstraction_enabled() -> bool:
    """Return True when the VCS abstraction layer is explicitly enabled."""
    return env_bool(ABSTRACTION_ENV_VAR)


def is_jj_enabled() -> bool:
    """Return True when the jj backend is opted in (requires the abstraction)."""
    return is_abstraction_enabled() and env_bool(JJ_ENV_VAR)


def use_legacy_git() -> bool:
    """Return True when callers should keep their direct git code paths."""
    return not is_abstraction_enabled()


def is_trace_enabled() -> bool:
    """Return True when every VCS subprocess should be logged at INFO."""
    return env_bool(TRACE_ENV_VAR)


def preferred_backend() -> VCSBackend:
    """
    Return the backend preferred for colocated repositories.

    ``BD_VCS`` wins when set to a recognised value; otherwise
    ``BD_VCS_PREFER_JJ=0`` selects git. The default is jj.
    """
    raw_value = os.getenv(VCS_PREFERENCE_ENV_VAR, "").strip().lower()
    if raw_value in ("jj", "jujutsu"):
        return VCSBackend.JUJUTSU
    if raw_value == "git":
        return VCSBackend.GIT
    if env_bool(PREFER_JJ_ENV_VAR, default=True):
        return VCSBackend.JUJUTSU
    return VCSBackend.GIT


@dataclass(frozen=True)
class FeatureFlags:
    """Snapshot of every VCS flag, for diagnostics."""

    abstraction: bool
    jj: bool
    preferred: VCSBackend
    trace: bool
    legacy_git: bool


def get_feature_flags() -> FeatureFlags:
    return FeatureFlags(
        abstraction=is_abstraction_enabled(),
        jj=is_jj_enabled(),
        preferred=preferred_backend(),
        trace=is_trace_enabled(),
        legacy_git=use_legacy_git(),
    )
