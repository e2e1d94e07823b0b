"""Shared phase enumerations."""

from __future__ import annotations

from enum import Enum


class PhaseName(str, Enum):
    """Enumeration of the pipeline stages."""

    SELECT_MODE = "select_mode"
    DISCOVER = "discover"
    LOAD = "load"
    PLAN = "plan"
    APPLY = "apply"
    VALIDATE = "validate"


__all__ = ["PhaseName"]
