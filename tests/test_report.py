"""Tests for reporting.report module."""

import json
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from providers.base import ApplyOutcome, Phase
from reporting.report import RunReport, StackOutcome
from stack_opr.state import StackStatus


def _deployed(name, change=ApplyOutcome.CREATED, **kwargs):
    return StackOutcome(stack_name=name, state=StackStatus.DEPLOYED, change=change, **kwargs)


def _failed(name, error='boom', phase=Phase.APPLY):
    return StackOutcome(stack_name=name, state=StackStatus.FAILED, error=error, phase=phase)


def _report(*outcomes, action='deploy'):
    report = RunReport(action=action, environment='test')
    report.start()
    for outcome in outcomes:
        report.record(outcome)
    report.close()
    return report


class TestStackOutcome:
    """Tests for StackOutcome."""

    def test_label_with_change(self):
        assert _deployed('A', ApplyOutcome.UPDATED).label == 'deployed (updated)'

    def test_label_without_change(self):
        outcome = StackOutcome(stack_name='A', state=StackStatus.DELETED)
        assert outcome.label == 'deleted'

    def test_to_dict(self):
        d = _deployed('A', outputs={'VpcId': 'vpc-1'}, duration=1.234).to_dict()
        assert d == {
            'name': 'A',
            'status': 'deployed',
            'duration': 1.2,
            'change': 'created',
            'outputs': {'VpcId': 'vpc-1'},
        }

    def test_to_dict_failure(self):
        d = _failed('A', error='[validate] A: bad', phase=Phase.VALIDATE).to_dict()
        assert d['status'] == 'failed'
        assert d['phase'] == 'validate'
        assert d['error'] == '[validate] A: bad'
        assert 'change' not in d


class TestRunReport:
    """Tests for RunReport."""

    def test_entries_keep_record_order(self):
        report = _report(_deployed('B'), _deployed('A'))
        assert [e.stack_name for e in report.entries] == ['B', 'A']

    def test_succeeded_iff_no_failure(self):
        assert _report(_deployed('A')).succeeded is True
        assert _report().succeeded is True
        assert _report(_deployed('A'), _failed('B')).succeeded is False

    def test_skipped_and_aborted_do_not_fail(self):
        report = _report(
            StackOutcome(stack_name='A', state=StackStatus.SKIPPED),
            StackOutcome(stack_name='B', state=StackStatus.ABORTED),
        )
        assert report.succeeded is True

    def test_record_after_close_raises(self):
        report = _report()
        with pytest.raises(RuntimeError, match='closed'):
            report.record(_deployed('A'))

    def test_entries_is_immutable_view(self):
        report = _report(_deployed('A'))
        assert isinstance(report.entries, tuple)

    def test_get(self):
        report = _report(_deployed('A'))
        assert report.get('A').state == StackStatus.DEPLOYED
        assert report.get('missing') is None

    def test_failures(self):
        report = _report(_deployed('A'), _failed('B'), _failed('C'))
        assert [f.stack_name for f in report.failures] == ['B', 'C']

    def test_duration(self):
        report = RunReport(action='deploy', environment='test')
        report.started_at = datetime(2025, 1, 1, 12, 0, 0)
        report.finished_at = report.started_at + timedelta(seconds=42)
        assert report.duration == 42.0

    def test_duration_not_started(self):
        assert RunReport(action='deploy', environment='test').duration == 0.0


class TestRenderSummary:
    """Tests for render_summary()."""

    def test_success(self):
        text = _report(_deployed('vpc'), _deployed('iam', ApplyOutcome.UNCHANGED)).render_summary()
        assert text.startswith("Deploy summary for 'test':")
        assert 'vpc  deployed (created)' in text
        assert 'iam  deployed (unchanged)' in text
        assert 'Result: SUCCEEDED' in text

    def test_failure(self):
        text = _report(_deployed('A'), _failed('B', error='[apply] B: boom')).render_summary()
        assert '[apply] B: boom' in text
        assert 'Result: FAILED (1 stack)' in text

    def test_cancelled(self):
        report = _report(StackOutcome(stack_name='A', state=StackStatus.SKIPPED))
        report.cancelled = True
        assert 'Result: CANCELLED' in report.render_summary()

    def test_aborted(self):
        report = _report(StackOutcome(stack_name='A', state=StackStatus.ABORTED), action='destroy')
        report.aborted = True
        text = report.render_summary()
        assert text.startswith("Destroy summary for 'test':")
        assert 'Result: ABORTED (not confirmed)' in text

    def test_empty(self):
        assert '(no stacks)' in _report().render_summary()


class TestReportOutput:
    """Tests for to_dict() and write()."""

    def test_to_dict(self):
        d = _report(_deployed('A'), _failed('B', error='first'), _failed('C', error='second')).to_dict()
        assert d['action'] == 'deploy'
        assert d['environment'] == 'test'
        assert d['success'] is False
        assert d['cancelled'] is False
        assert d['aborted'] is False
        assert [s['name'] for s in d['stacks']] == ['A', 'B', 'C']
        assert d['error'] == 'first'
        assert d['started_at'] is not None

    def test_to_dict_success_has_no_error(self):
        assert 'error' not in _report(_deployed('A')).to_dict()

    def test_to_dict_is_json_serializable(self):
        json.dumps(_report(_deployed('A', outputs={'k': 'v'})).to_dict())

    def test_write(self, tmp_path):
        report = _report(_deployed('A'))
        paths = report.write(tmp_path / 'reports')

        assert len(paths) == 2
        json_path, md_path = paths
        assert json_path.name.endswith('.deploy.test.passed.json')
        assert md_path.name.endswith('.deploy.test.passed.md')
        assert json.loads(json_path.read_text())['success'] is True
        md = md_path.read_text()
        assert '# deploy: test' in md
        assert '**Status**: PASSED' in md
        assert '| A |' in md

    def test_write_failed(self, tmp_path):
        paths = _report(_failed('A')).write(tmp_path)
        assert paths[0].name.endswith('.failed.json')
        assert '**Status**: FAILED' in paths[1].read_text()
