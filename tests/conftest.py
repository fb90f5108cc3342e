"""Shared pytest fixtures for stack-driver tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import RunConfig
from providers.fake import FakeStackProvider
from stackset import StackDescriptor


def make_descriptor(name, depends_on=(), template=None, params=None):
    """Build a StackDescriptor with placeholder file references."""
    return StackDescriptor(
        name=name,
        template_ref=template or f'/templates/{name}.yaml',
        params_ref=params or f'/parameters/{name}.json',
        depends_on=tuple(depends_on),
    )


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    """Keep the caller's shell environment out of config resolution."""
    for var in ('ENV_NAME', 'AWS_REGION', 'STACK_DRIVER_CONFIG'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def run_config(tmp_path):
    """RunConfig pointing at empty template and parameter dirs."""
    return RunConfig(
        environment='test',
        region='eu-west-1',
        templates_dir=tmp_path / 'templates',
        params_dir=tmp_path / 'parameters',
        delete_timeout=60.0,
        poll_interval=1.0,
        max_poll_interval=4.0,
    )


@pytest.fixture
def fake_provider():
    """Fresh in-memory provider."""
    return FakeStackProvider()


@pytest.fixture
def chain():
    """Three stacks A <- B <- C."""
    return [
        make_descriptor('A'),
        make_descriptor('B', depends_on=['A']),
        make_descriptor('C', depends_on=['B']),
    ]


@pytest.fixture
def stack_dir(tmp_path):
    """Create a stack file with matching template and parameter files.

    Creates:
    - stacks.yaml (environment 'test', three chained stacks by role)
    - templates/{vpc,iam,baseline}.yaml
    - parameters/{vpc,iam,baseline}.json
    """
    (tmp_path / 'templates').mkdir()
    (tmp_path / 'parameters').mkdir()
    for role in ('vpc', 'iam', 'baseline'):
        (tmp_path / 'templates' / f'{role}.yaml').write_text(
            "AWSTemplateFormatVersion: '2010-09-09'\nResources: {}\n")
        (tmp_path / 'parameters' / f'{role}.json').write_text('[]\n')

    (tmp_path / 'stacks.yaml').write_text("""
environment: test
region: eu-west-1
templates_dir: templates
parameters_dir: parameters

settings:
  delete_timeout: 120
  poll_interval: 2
  tags:
    Owner: platform

stacks:
  - role: vpc
    template: vpc.yaml
    parameters: vpc.json
  - role: iam
    template: iam.yaml
    parameters: iam.json
    depends_on: [vpc]
  - role: baseline
    template: baseline.yaml
    parameters: baseline.json
    depends_on: [iam]
""")
    return tmp_path
