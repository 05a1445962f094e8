"""Final result summarisation from the Playwright JSON report.

The ``line,json`` reporter combination prints progress lines first and the
JSON report last, so the report is usually the object that starts right
after the last newline. Parse failures never propagate: they turn into a
minimal report whose ``errors`` carry the head of the raw output.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from app.schemas.test_run import RunStats

logger = logging.getLogger(__name__)

ERROR_SNIPPET_LENGTH = 500

_STATUS_SYNONYMS: dict[str, str] = {
    "passed": "passed",
    "expected": "passed",
    "flaky": "passed",
    "failed": "failed",
    "unexpected": "failed",
    "timedOut": "failed",
    "interrupted": "failed",
    "skipped": "skipped",
}

_decoder = json.JSONDecoder()


def _decode_object(text: str, start: int) -> dict[str, Any] | None:
    try:
        value, _ = _decoder.raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def extract_report(output: str) -> dict[str, Any]:
    """Locate and parse the JSON report embedded in *output*."""
    candidates: list[int] = []
    last = output.rfind("\n{")
    if last != -1:
        candidates.append(last + 1)
    first = output.find("{")
    if first != -1 and first not in candidates:
        candidates.append(first)

    for start in candidates:
        report = _decode_object(output, start)
        if report is not None:
            return report

    logger.warning("summarizer: no JSON report found in %d chars of output", len(output))
    return {
        "suites": [],
        "errors": [output[:ERROR_SNIPPET_LENGTH] or "Failed to parse test output"],
    }


def _iter_tests(suites: list[Any] | None):
    for suite in suites or []:
        if not isinstance(suite, dict):
            continue
        for spec in suite.get("specs") or []:
            for test in spec.get("tests") or []:
                if isinstance(test, dict):
                    yield test
        yield from _iter_tests(suite.get("suites"))


def _test_status(test: dict[str, Any]) -> str:
    results = test.get("results") or []
    if results and isinstance(results[0], dict) and results[0].get("status"):
        return results[0]["status"]
    return test.get("status") or "unknown"


def count_listed_tests(report: dict[str, Any]) -> int:
    """Number of tests in a ``--list`` report (every test of every spec)."""
    return sum(1 for _ in _iter_tests(report.get("suites")))


def summarize(report: dict[str, Any], duration: int) -> RunStats:
    """Derive final stats; *duration* is the measured wall-clock time in ms.

    The report's own ``stats`` block wins because the runner has already
    reconciled retries and flaky tests there. Without it, leaf tests are
    counted one by one, and tests with an unknown status only add to
    ``total``.
    """
    stats = report.get("stats")
    if isinstance(stats, dict) and isinstance(stats.get("expected"), (int, float)):
        passed = int(stats.get("expected") or 0)
        failed = int(stats.get("unexpected") or 0)
        skipped = int(stats.get("skipped") or 0)
        logger.info(
            "summarizer: using runner stats: %d passed, %d failed, %d skipped",
            passed,
            failed,
            skipped,
        )
        return RunStats(
            total=passed + failed + skipped,
            passed=passed,
            failed=failed,
            skipped=skipped,
            duration=duration,
        )

    counts = {"passed": 0, "failed": 0, "skipped": 0}
    total = 0
    for test in _iter_tests(report.get("suites")):
        total += 1
        category = _STATUS_SYNONYMS.get(_test_status(test))
        if category:
            counts[category] += 1

    logger.info(
        "summarizer: using counted stats: %d passed, %d failed, %d skipped of %d",
        counts["passed"],
        counts["failed"],
        counts["skipped"],
        total,
    )
    return RunStats(total=total, duration=duration, **counts)
