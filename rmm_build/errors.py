"""Errors raised during a configure pass"""

from __future__ import annotations

from typing import Mapping, Optional


class RmmBuildError(RuntimeError):
    """Base exception for configure pass errors.

    Carries an optional hint and a flat context mapping that are rendered
    below the message so the CLI can print a complete diagnostic.
    """

    def __init__(self,
                 message: str,
                 *,
                 hint: Optional[str] = None,
                 context: Optional[Mapping[str, str]] = None):
        super().__init__(message)
        self.hint = hint
        self.context = dict(context or {})

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.hint:
            parts.append(f"Hint: {self.hint}")
        for key, value in self.context.items():
            if value:
                parts.append(f"  {key}: {value}")
        return "\n".join(parts)


class DependencyFetchError(RmmBuildError):
    """Raised when a dependency cannot be fetched at its pinned revision"""


class ConfigurationError(RmmBuildError):
    """Raised for unknown, invalid or missing configuration values"""


class ToolchainMissingError(RmmBuildError):
    """Raised when a required toolchain component is not installed"""


__all__ = [
    "ConfigurationError",
    "DependencyFetchError",
    "RmmBuildError",
    "ToolchainMissingError",
]
