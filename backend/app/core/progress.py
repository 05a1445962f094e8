"""Incremental progress parsing of Playwright ``line`` reporter output.

The runner prints results as they happen and out of category order, so the
counters here are an approximation that the final JSON report later
reconciles. Every counter follows the monotonic adoption rule: a newly
observed value is taken only when it is larger than the current one, so
out-of-order or repeated markers never make a counter go backwards.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable

# CSI colour/cursor sequences plus the bare "[2K"-style leftovers some
# terminals emit once the escape byte has been stripped
_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]|\[\d+[A-Za-z]")

_FAILURE_RE = re.compile(r"^\s*(\d+)\)\s+\[")
_SKIPPED_COUNT_RE = re.compile(r"(\d+)\s+skipped", re.IGNORECASE)
_PROGRESS_RE = re.compile(r"\[(\d+)/(\d+)\]")
_SKIP_MARKER_RE = re.compile(r"\[\d+/\d+\]\s*-\s+\[")
_SKIP_BULLET_RE = re.compile(r"^\s*-\s+\[.*\]\s+›")


def strip_ansi(line: str) -> str:
    """Remove terminal escape sequences from *line*."""
    return _ANSI_RE.sub("", line)


@dataclass
class ProgressSnapshot:
    """Counters of an in-flight run at one point in time."""

    completed: int
    passed: int
    failed: int
    skipped: int
    expected_total: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "completed": self.completed,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "expectedTotal": self.expected_total,
        }


@dataclass
class ProgressState:
    """Mutable counters owned by exactly one run."""

    expected_total: int = 0
    completed: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    marker_total: int | None = None
    seen_skipped: set[int] = field(default_factory=set)


def _rule_failure(line: str, state: ProgressState) -> bool:
    # "  2) [chromium] › login.spec.ts:10:5 › ..." enumerates failures by rank
    m = _FAILURE_RE.match(line)
    if m and int(m.group(1)) > state.failed:
        state.failed = int(m.group(1))
        return True
    return False


def _rule_skipped_count(line: str, state: ProgressState) -> bool:
    m = _SKIPPED_COUNT_RE.search(line)
    if m and int(m.group(1)) > state.skipped:
        state.skipped = int(m.group(1))
        return True
    return False


def _rule_skipped_test(line: str, state: ProgressState) -> bool:
    ordinal = _PROGRESS_RE.search(line)
    if not ordinal:
        return False
    is_skip = (
        _SKIP_MARKER_RE.search(line) is not None
        or _SKIP_BULLET_RE.search(line) is not None
        or "skipped" in line.lower()
    )
    if not is_skip:
        return False
    number = int(ordinal.group(1))
    if number in state.seen_skipped:
        return False
    state.seen_skipped.add(number)
    # The aggregate line may already include this skip
    if len(state.seen_skipped) > state.skipped:
        state.skipped = len(state.seen_skipped)
        return True
    return False


def _rule_progress(line: str, state: ProgressState) -> bool:
    m = _PROGRESS_RE.search(line)
    if not m:
        return False
    current, total = int(m.group(1)), int(m.group(2))
    if total:
        state.marker_total = total
    if current > state.completed:
        state.completed = current
        return True
    return False


# Applied in this order to every line
RULES: tuple[tuple[str, Callable[[str, ProgressState], bool]], ...] = (
    ("failure", _rule_failure),
    ("skipped_count", _rule_skipped_count),
    ("skipped_test", _rule_skipped_test),
    ("progress", _rule_progress),
)


class ProgressParser:
    """Turns raw stdout chunks into progress snapshots for one run."""

    def __init__(self, expected_total: int = 0) -> None:
        self.state = ProgressState(expected_total=expected_total)
        self._buffer = ""

    @property
    def expected_total(self) -> int:
        """Total from the latest progress marker, else the pre-run count."""
        return self.state.marker_total or self.state.expected_total

    def snapshot(self) -> ProgressSnapshot:
        s = self.state
        return ProgressSnapshot(
            completed=s.completed,
            passed=s.passed,
            failed=s.failed,
            skipped=s.skipped,
            expected_total=self.expected_total,
        )

    def feed(self, chunk: str) -> list[ProgressSnapshot]:
        """Consume a decoded chunk; return one snapshot per line that changed a counter.

        The trailing partial line is held back until the next chunk or
        :meth:`flush`.
        """
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        snapshots = []
        for line in lines:
            snap = self.process_line(line)
            if snap is not None:
                snapshots.append(snap)
        return snapshots

    def flush(self) -> list[ProgressSnapshot]:
        """Process whatever is left in the buffer at end of stream."""
        line, self._buffer = self._buffer, ""
        if not line:
            return []
        snap = self.process_line(line)
        return [snap] if snap is not None else []

    def process_line(self, line: str) -> ProgressSnapshot | None:
        clean = strip_ansi(line.rstrip("\r"))
        changed = False
        for _name, rule in RULES:
            if rule(clean, self.state):
                changed = True
        if not changed:
            return None
        s = self.state
        s.passed = s.completed - s.failed - s.skipped
        return self.snapshot()
