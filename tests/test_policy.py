"""Tests for the per-request error policy."""

import logging

import pytest

from lingoproxy.errors import ErrorCategory, ErrorTracker, ExtractionMismatch
from lingoproxy.policy import ErrorPolicy


class TestErrorTracker:
    def test_counts_per_category(self):
        tracker = ErrorTracker()

        assert tracker.register(ErrorCategory.PLACEHOLDER) == 1
        assert tracker.register(ErrorCategory.PLACEHOLDER) == 2
        assert tracker.register(ErrorCategory.TRANSLATION) == 1
        assert tracker.total == 3
        assert tracker.summary() == "placeholder=2, translation=1"

    def test_empty_summary(self):
        assert ErrorTracker().summary() == ""


class TestErrorPolicy:
    def test_lenient_mode_records_and_logs(self, caplog):
        policy = ErrorPolicy()

        with caplog.at_level(logging.WARNING, logger="lingoproxy.policy"):
            policy.handle_error(ErrorCategory.EXTRACTION, "lost a node")
            policy.handle_error(ErrorCategory.CACHE_WRITE, "disk full")

        assert policy.messages == ["lost a node", "disk full"]
        assert [record.levelname for record in caplog.records] == ["WARNING", "ERROR"]

    def test_strict_mode_raises_page_errors(self):
        policy = ErrorPolicy(strict=True)

        with pytest.raises(ExtractionMismatch):
            policy.handle_error(ErrorCategory.EXTRACTION, "lost a node")

    def test_strict_mode_keeps_bookkeeping_errors_quiet(self):
        policy = ErrorPolicy(strict=True)

        policy.handle_error(ErrorCategory.CACHE_WRITE, "disk full")

        assert policy.tracker.total == 1
