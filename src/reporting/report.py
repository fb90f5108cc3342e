"""Run reporting for stack orchestration."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from providers.base import ApplyOutcome, Phase
from stack_opr.state import StackStatus

STATUS_MARKERS = {
    StackStatus.DEPLOYED: '✅',
    StackStatus.DELETED: '✅',
    StackStatus.FAILED: '❌',
    StackStatus.ABORTED: '⛔',
    StackStatus.SKIPPED: '⏭️',
}


@dataclass(frozen=True)
class StackOutcome:
    """Final outcome of one stack in a run."""
    stack_name: str
    state: StackStatus
    error: Optional[str] = None
    phase: Optional[Phase] = None
    change: Optional[ApplyOutcome] = None
    outputs: dict[str, str] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def label(self) -> str:
        """Status label, with the apply outcome for deployed stacks."""
        if self.change is not None:
            return f"{self.state.value} ({self.change.value})"
        return self.state.value

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.stack_name,
            'status': self.state.value,
            'duration': round(self.duration, 1),
        }
        if self.change is not None:
            d['change'] = self.change.value
        if self.phase is not None:
            d['phase'] = self.phase.value
        if self.error is not None:
            d['error'] = self.error
        if self.outputs:
            d['outputs'] = dict(self.outputs)
        return d


@dataclass
class RunReport:
    """Ordered per-stack outcomes of one deploy or destroy run.

    Created at run start, appended to by the orchestrator, closed at the end.
    A closed report rejects further records.
    """
    action: str
    environment: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancelled: bool = False
    aborted: bool = False

    _entries: list[StackOutcome] = field(default_factory=list, repr=False)
    _closed: bool = field(default=False, repr=False)

    def start(self) -> None:
        """Mark run start."""
        self.started_at = datetime.now()

    def record(self, outcome: StackOutcome) -> None:
        """Append a stack outcome.

        Raises:
            RuntimeError: If the report has been closed
        """
        if self._closed:
            raise RuntimeError(f"Run report for '{self.action}' is closed")
        self._entries.append(outcome)

    def close(self) -> None:
        """Finalize the report; no further entries may be recorded."""
        self.finished_at = datetime.now()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entries(self) -> tuple[StackOutcome, ...]:
        return tuple(self._entries)

    @property
    def succeeded(self) -> bool:
        """True iff no entry failed."""
        return not any(e.state == StackStatus.FAILED for e in self._entries)

    @property
    def failures(self) -> list[StackOutcome]:
        return [e for e in self._entries if e.state == StackStatus.FAILED]

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def get(self, stack_name: str) -> Optional[StackOutcome]:
        """Outcome for a stack, or None if the run never reached it."""
        for entry in self._entries:
            if entry.stack_name == stack_name:
                return entry
        return None

    def render_summary(self) -> str:
        """Human-readable per-stack outcome lines plus an overall line."""
        width = max((len(e.stack_name) for e in self._entries), default=0)
        lines = [f"{self.action.capitalize()} summary for '{self.environment}':"]
        for e in self._entries:
            line = f"  {e.stack_name:<{width}}  {e.label}"
            if e.duration:
                line += f"  [{e.duration:.1f}s]"
            if e.error:
                line += f"  {e.error}"
            lines.append(line)
        if not self._entries:
            lines.append("  (no stacks)")

        if self.aborted:
            overall = 'ABORTED (not confirmed)'
        elif self.cancelled:
            overall = 'CANCELLED'
        elif self.succeeded:
            overall = 'SUCCEEDED'
        else:
            overall = f"FAILED ({len(self.failures)} stack{'s' if len(self.failures) != 1 else ''})"
        lines.append(f"Result: {overall} in {self.duration:.1f}s")
        return '\n'.join(lines)

    def to_dict(self) -> dict:
        """Return report as dictionary for JSON output."""
        result: dict[str, Any] = {
            'action': self.action,
            'environment': self.environment,
            'success': self.succeeded,
            'cancelled': self.cancelled,
            'aborted': self.aborted,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration_seconds': round(self.duration, 1),
            'stacks': [e.to_dict() for e in self._entries],
        }
        # Include first error message on failure
        if self.failures:
            result['error'] = self.failures[0].error
        return result

    def write(self, report_dir: Path) -> list[Path]:
        """Write JSON and markdown audit files.

        Returns:
            Paths of the files written
        """
        report_dir.mkdir(parents=True, exist_ok=True)
        json_path = self._report_filename(report_dir, 'json')
        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)

        md_path = self._report_filename(report_dir, 'md')
        with open(md_path, 'w', encoding='utf-8') as f:
            f.write(self._markdown())
        return [json_path, md_path]

    def _markdown(self) -> str:
        status = 'PASSED' if self.succeeded else 'FAILED'
        if self.aborted:
            status = 'ABORTED'
        elif self.cancelled:
            status = 'CANCELLED'

        lines = [
            f"# {self.action}: {self.environment}",
            "",
            f"**Status**: {status}",
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Stacks",
            "",
            "| Stack | Status | Duration | Error |",
            "|-------|--------|----------|-------|",
        ]
        for e in self._entries:
            marker = STATUS_MARKERS.get(e.state, '❓')
            lines.append(f"| {e.stack_name} | {marker} {e.label} | {e.duration:.1f}s | {e.error or ''} |")

        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])
        return '\n'.join(lines)

    def _report_filename(self, report_dir: Path, ext: str) -> Path:
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.succeeded else 'failed'
        return report_dir / f"{timestamp}.{self.action}.{self.environment}.{status}.{ext}"
