"""Run reports."""

from reporting.report import RunReport, StackOutcome

__all__ = ['RunReport', 'StackOutcome']
