"""Exceptions raised by the proxy and the records kept when they are handled."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from .placeholders import ValidationResult


class ErrorCategory(Enum):
    """Categorises runtime errors so the policy can decide how to degrade."""

    EXTRACTION = auto()
    PLACEHOLDER = auto()
    TRANSLATION = auto()
    CACHE_WRITE = auto()
    NETWORK = auto()
    OTHER = auto()


class LingoProxyError(Exception):
    """Base exception for all custom errors."""


class ExtractionMismatch(LingoProxyError):
    """Raised when segments and translations no longer line up."""

    def __init__(self, message: str, *, index: int | None = None) -> None:
        super().__init__(message)
        self.index = index


class PlaceholderViolation(LingoProxyError):
    """Raised when a translation lost, invented, or misnested tokens."""

    def __init__(self, message: str, result: "ValidationResult") -> None:
        super().__init__(message)
        self.result = result


class TranslationError(LingoProxyError):
    """Raised when the upstream translator fails or times out."""


class CacheWriteError(LingoProxyError):
    """Raised when the translation store rejects a write."""


class TranslationProviderConfigurationError(LingoProxyError):
    """Raised when the translation provider is misconfigured."""


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None


class ErrorTracker:
    """Per-category error counts for one request."""

    def __init__(self) -> None:
        self.counts: Counter[ErrorCategory] = Counter()

    def register(self, category: ErrorCategory) -> int:
        """Count an error; return how many of this category the request has seen."""

        self.counts[category] += 1
        return self.counts[category]

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def summary(self) -> str:
        """``placeholder=2, translation=1`` style text for log lines."""

        return ", ".join(f"{category.name.lower()}={count}" for category, count in self.counts.items())
