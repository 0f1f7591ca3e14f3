"""Error taxonomy for SeriesForge.

Callers translate these into their own surfaces (HTTP status codes, CLI exit
codes). Storage engine failures are wrapped in ``StorageError`` with the
engine's message left untouched.
"""

from __future__ import annotations


class SeriesForgeError(Exception):
    """Base class for every error raised by the catalog and query engine."""


class ConfigError(SeriesForgeError):
    """Invalid origin or connector configuration."""


class QueryError(SeriesForgeError):
    """A group query that cannot be evaluated."""


class DiscoveryError(SeriesForgeError):
    """A connector failed while walking its backend."""


class StorageError(SeriesForgeError):
    """Failure reported by the storage engine."""


class MissingOptionalDependencyError(ImportError):
    """Raised when an optional dependency is required but not installed.

    Attributes:
        extra: The pip extra that provides the dependency (e.g., "rrd").
        install_hint: Installation command hint.
    """

    def __init__(self, extra: str, install_hint: str | None = None) -> None:
        self.extra = extra
        self.install_hint = install_hint or f"pip install 'seriesforge[{extra}]'"
        super().__init__(
            f"This feature requires the '{extra}' extra. Install with: {self.install_hint}"
        )
