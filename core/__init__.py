"""
layerhost - Core Module

Foundational pieces every other package depends on. Kept free of imports
from the configuration, di and hosting packages so any of them can import
it without cycles.

Usage:
    from core import ConfigurationError, ResolutionError, LifecycleError
"""

from core.errors import (
    AlreadyBuiltError,
    ConfigurationError,
    ErrorContext,
    ErrorSeverity,
    HostBuildError,
    HostingError,
    LifecycleError,
    ResolutionError,
    StartCancelledError,
    UnitFailure,
    annotate_phase,
)

__all__ = [
    "HostingError",
    "ConfigurationError",
    "AlreadyBuiltError",
    "ResolutionError",
    "HostBuildError",
    "LifecycleError",
    "StartCancelledError",
    "UnitFailure",
    "ErrorContext",
    "ErrorSeverity",
    "annotate_phase",
]
