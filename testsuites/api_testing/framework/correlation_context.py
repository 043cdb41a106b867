"""
================================================================================
Test Context - Correlation Tracking
================================================================================

Per-test execution state used to tag every API call with a correlation ID.

Each running test owns a CorrelationRecord stored in a ContextVar, so tests
running in parallel threads (or asyncio tasks) never see each other's
counters. Finished tests leave a TestStats entry in a lock-protected,
process-wide statistics table that feeds the end-of-suite summary.

Correlation ID format:
    <TEST_ID>-R<sequence>      e.g. 3F9A1C2B-R001

Calls made outside a started test get a random INIT<4 hex> test ID,
e.g. INIT7C0D-R001.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import threading
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional

from loguru import logger


# Tests slower than this are listed in the summary
DEFAULT_SLOW_TEST_THRESHOLD_MS = 5000

# Maximum number of slow tests reported
MAX_SLOW_TESTS_REPORTED = 5

# Test ID prefix for calls issued outside a started test (INIT + 4 hex chars)
UNSTARTED_TEST_ID = "INIT"

# Records of every TestContext in the current thread or task, keyed by
# TestContext.key. The mapping is replaced on write, never mutated, so a task
# that copied the context cannot add or drop records in its parent.
_records: ContextVar[Optional[Mapping[str, "CorrelationRecord"]]] = ContextVar(
    "correlation_records", default=None
)


@dataclass
class CorrelationRecord:
    """State of one logical test execution."""
    test_id: str
    test_class: Optional[str] = None
    test_name: Optional[str] = None
    sequence: int = 0
    started_at: float = field(default_factory=time.time)
    current_request_id: Optional[str] = None
    custom_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def full_test_name(self) -> str:
        if self.test_class is None and self.test_name is None:
            return "Unknown"
        class_name = (self.test_class or "").rsplit(".", 1)[-1]
        return f"{class_name}.{self.test_name or ''}"


@dataclass(frozen=True)
class TestStats:
    """Aggregate statistics of a finished test."""
    __test__ = False

    test_id: str
    test_name: str
    duration_ms: int
    request_count: int
    passed: bool
    failure_reason: Optional[str] = None


class TestContext:
    """
    Correlation context shared by the HTTP client and the pytest hooks.

    Usage:
        >>> context = TestContext()
        >>> context.start_test("tests.test_user.TestUserAPI", "test_get_profile")
        >>> context.register_request()
        '3F9A1C2B-R001'
        >>> context.end_test(passed=True)
    """
    __test__ = False

    def __init__(self, slow_test_threshold_ms: int = DEFAULT_SLOW_TEST_THRESHOLD_MS) -> None:
        self.slow_test_threshold_ms = slow_test_threshold_ms
        self.key = uuid.uuid4().hex
        self._stats: Dict[str, TestStats] = {}
        self._stats_lock = threading.Lock()

    # ==========================================================================
    # Test lifecycle
    # ==========================================================================

    def start_test(self, test_class: str, test_name: str) -> CorrelationRecord:
        """
        Initialize a fresh record for the test running in this context.

        Calling it again without end_test replaces the previous record.
        """
        record = CorrelationRecord(
            test_id=self._generate_test_id(),
            test_class=test_class,
            test_name=test_name,
        )
        self._store(record)
        logger.debug(f"[TEST-START] {record.full_test_name} - Test ID: {record.test_id}")
        return record

    def end_test(self, passed: bool, failure_reason: Optional[str] = None) -> TestStats:
        """Record statistics for the current test and clear its state."""
        record = self._record()
        duration_ms = int((time.time() - record.started_at) * 1000)
        full_name = record.full_test_name

        stats = TestStats(
            test_id=record.test_id,
            test_name=full_name,
            duration_ms=duration_ms,
            request_count=record.sequence,
            passed=passed,
            failure_reason=failure_reason,
        )
        with self._stats_lock:
            self._stats[full_name] = stats

        status = "[PASS]" if passed else "[FAIL]"
        logger.debug(
            f"[TEST-END] {full_name} - {status} | Duration: {duration_ms}ms | "
            f"API Calls: {record.sequence}"
        )
        if not passed and failure_reason:
            logger.debug(f"[TEST-END] Failure: {failure_reason}")

        self._store(None)
        return stats

    @contextmanager
    def execution(self, test_class: str, test_name: str) -> Iterator[CorrelationRecord]:
        """Run a block as one test execution; an exception marks it failed."""
        record = self.start_test(test_class, test_name)
        try:
            yield record
        except BaseException as e:
            self.end_test(passed=False, failure_reason=f"{type(e).__name__}: {e}")
            raise
        self.end_test(passed=True)

    # ==========================================================================
    # Request tracking
    # ==========================================================================

    def register_request(self) -> str:
        """Count a new outbound call and return its correlation ID."""
        record = self._record()
        record.sequence += 1
        request_id = f"{record.test_id}-R{record.sequence:03d}"
        record.current_request_id = request_id
        return request_id

    @property
    def current_request_id(self) -> Optional[str]:
        return self._record().current_request_id

    @property
    def test_id(self) -> str:
        return self._record().test_id

    @property
    def full_test_name(self) -> str:
        return self._record().full_test_name

    @property
    def request_count(self) -> int:
        return self._record().sequence

    @property
    def elapsed_ms(self) -> int:
        return int((time.time() - self._record().started_at) * 1000)

    # ==========================================================================
    # Custom data
    # ==========================================================================

    def set(self, key: str, value: Any) -> None:
        """Store custom data for the current test."""
        self._record().custom_data[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Read custom data of the current test."""
        return self._record().custom_data.get(key, default)

    # ==========================================================================
    # Statistics
    # ==========================================================================

    def all_stats(self) -> Dict[str, TestStats]:
        """Snapshot of statistics for all finished tests."""
        with self._stats_lock:
            return dict(self._stats)

    def clear_stats(self) -> None:
        with self._stats_lock:
            self._stats.clear()

    def log_summary(self) -> None:
        """Log totals for the run and warn about the slowest tests."""
        stats = list(self.all_stats().values())
        if not stats:
            return

        total = len(stats)
        passed = sum(1 for s in stats if s.passed)
        total_duration = sum(s.duration_ms for s in stats)
        total_requests = sum(s.request_count for s in stats)

        logger.info("+" + "=" * 78 + "+")
        logger.info("|" + "TEST EXECUTION SUMMARY".center(78) + "|")
        logger.info("+" + "=" * 78 + "+")
        logger.info(f"| Total Tests     : {total} (Passed: {passed}, Failed: {total - passed})")
        logger.info(f"| Total Duration  : {total_duration}ms ({total_duration // 1000} sec)")
        logger.info(f"| Total API Calls : {total_requests}")
        logger.info(
            f"| Avg per Test    : {total_duration // total}ms, "
            f"{total_requests // total} requests"
        )
        logger.info("+" + "=" * 78 + "+")

        for slow in self.slow_tests():
            logger.warning(f"! Slow test: {slow.test_name} - {slow.duration_ms}ms")

    def slow_tests(self) -> list:
        """Tests above the slow threshold, slowest first."""
        slow = [
            s for s in self.all_stats().values()
            if s.duration_ms > self.slow_test_threshold_ms
        ]
        slow.sort(key=lambda s: s.duration_ms, reverse=True)
        return slow[:MAX_SLOW_TESTS_REPORTED]

    # ==========================================================================
    # Internals
    # ==========================================================================

    def _record(self) -> CorrelationRecord:
        records = _records.get()
        record = records.get(self.key) if records else None
        if record is None:
            record = CorrelationRecord(
                test_id=f"{UNSTARTED_TEST_ID}{uuid.uuid4().hex[:4].upper()}"
            )
            self._store(record)
        return record

    def _store(self, record: Optional[CorrelationRecord]) -> None:
        records = dict(_records.get() or {})
        if record is None:
            records.pop(self.key, None)
        else:
            records[self.key] = record
        _records.set(records)

    @staticmethod
    def _generate_test_id() -> str:
        return uuid.uuid4().hex[:8].upper()


__all__ = [
    "CorrelationRecord",
    "TestContext",
    "TestStats",
]
