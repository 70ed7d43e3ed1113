"""Degradation policy for errors raised while rendering a page."""

from __future__ import annotations

import logging
from typing import List, Optional

from .errors import (
    ErrorCategory,
    ErrorRecord,
    ErrorTracker,
    ExtractionMismatch,
    LingoProxyError,
    PlaceholderViolation,
)

logger = logging.getLogger(__name__)

# Categories that may corrupt a user-facing page. Strict callers get an
# exception; everyone else gets the source text for the affected unit.
PAGE_CATEGORIES = frozenset({ErrorCategory.EXTRACTION, ErrorCategory.PLACEHOLDER})

LOGGED_AS_ERROR = frozenset({ErrorCategory.TRANSLATION, ErrorCategory.CACHE_WRITE})


class ErrorPolicy:
    """Collects handled errors for one request and applies strict mode."""

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self.records: List[ErrorRecord] = []
        self.tracker = ErrorTracker()

    def handle_error(
        self,
        category: ErrorCategory,
        message: str,
        details: Optional[str] = None,
        *,
        exc: LingoProxyError | None = None,
    ) -> None:
        """Record an error and raise it when strict mode demands."""

        self.records.append(ErrorRecord(category=category, message=message, details=details))
        seen = self.tracker.register(category)

        if self.strict and category in PAGE_CATEGORIES:
            if exc is not None:
                raise exc
            if category == ErrorCategory.EXTRACTION:
                raise ExtractionMismatch(message)
            raise LingoProxyError(message)

        level = logging.ERROR if category in LOGGED_AS_ERROR else logging.WARNING
        if seen > 1:
            logger.log(level, "%s (%s error #%d this request)", message, category.name.lower(), seen)
        else:
            logger.log(level, message)

    def handle_violation(self, violation: PlaceholderViolation) -> None:
        """Shortcut for placeholder violations detected after restore."""

        self.handle_error(
            ErrorCategory.PLACEHOLDER,
            str(violation),
            details="; ".join(violation.result.errors),
            exc=violation,
        )

    @property
    def messages(self) -> List[str]:
        return [record.message for record in self.records]
