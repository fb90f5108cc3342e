"""Operator engine for stack-based infrastructure orchestration.

Resolves stack dependency order and drives deploy/destroy lifecycles
through a stack provider.

Package name uses 'stack_opr' (short for operator) to avoid collision
with Python's stdlib 'operator' module.
"""
