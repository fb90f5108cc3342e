"""Tests for providers.cloudformation module.

run_command is patched so no AWS CLI is needed; assertions check the
commands built and how their results are interpreted.
"""

import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from providers.base import (
    ApplyError,
    ApplyOutcome,
    DeleteError,
    Phase,
    StackOperationError,
    StackProvider,
    ValidationError,
    WaitTimeoutError,
)
from providers.cloudformation import CloudFormationProvider
from stackset import StackDescriptor

NOT_FOUND = (254, '', 'An error occurred (ValidationError) when calling the DescribeStacks '
                      'operation: Stack with id test-vpc does not exist')


def _describe_output(status='CREATE_COMPLETE', outputs=None):
    stack = {'StackName': 'test-vpc', 'StackStatus': status}
    if outputs is not None:
        stack['Outputs'] = outputs
    return 0, json.dumps({'Stacks': [stack]}), ''


@pytest.fixture
def descriptor(tmp_path):
    template = tmp_path / 'vpc.yaml'
    template.write_text('Resources: {}\n')
    params = tmp_path / 'vpc.json'
    params.write_text('[]\n')
    return StackDescriptor(name='test-vpc', template_ref=str(template), params_ref=str(params))


@pytest.fixture
def provider(run_config):
    sleeps = []
    p = CloudFormationProvider(config=run_config, sleep=sleeps.append)
    p.sleeps = sleeps
    return p


class TestProtocol:

    def test_satisfies_protocol(self, provider):
        assert isinstance(provider, StackProvider)


class TestValidate:
    """Tests for validate()."""

    @patch('providers.cloudformation.run_command')
    def test_success(self, mock_run, provider, descriptor):
        mock_run.return_value = (0, '{"Parameters": []}', '')
        provider.validate(descriptor)

        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ['aws', 'cloudformation', 'validate-template']
        assert f'file://{descriptor.template_ref}' in cmd
        assert cmd[-2:] == ['--region', 'eu-west-1']

    @patch('providers.cloudformation.run_command')
    def test_failure(self, mock_run, provider, descriptor):
        mock_run.return_value = (255, '', 'Template format error: unsupported structure')
        with pytest.raises(ValidationError) as exc_info:
            provider.validate(descriptor)
        assert exc_info.value.phase == Phase.VALIDATE
        assert exc_info.value.stack_name == 'test-vpc'
        assert 'Template format error' in exc_info.value.detail

    @patch('providers.cloudformation.run_command')
    def test_missing_template(self, mock_run, provider, tmp_path):
        desc = StackDescriptor(name='x', template_ref=str(tmp_path / 'gone.yaml'), params_ref='p')
        with pytest.raises(ValidationError, match='Template not found'):
            provider.validate(desc)
        mock_run.assert_not_called()


class TestApply:
    """Tests for apply()."""

    @patch('providers.cloudformation.run_command')
    def test_create(self, mock_run, provider, descriptor):
        mock_run.side_effect = [NOT_FOUND, (0, 'Successfully created/updated stack - test-vpc', '')]
        assert provider.apply(descriptor) == ApplyOutcome.CREATED

        cmd = mock_run.call_args_list[1][0][0]
        assert cmd[2] == 'deploy'
        assert cmd[cmd.index('--stack-name') + 1] == 'test-vpc'
        assert cmd[cmd.index('--template-file') + 1] == descriptor.template_ref
        assert cmd[cmd.index('--parameter-overrides') + 1] == f'file://{descriptor.params_ref}'
        assert 'CAPABILITY_NAMED_IAM' in cmd
        assert 'CAPABILITY_AUTO_EXPAND' in cmd
        assert 'Environment=test' in cmd
        assert 'ManagedBy=CloudFormation' in cmd
        assert any(arg.startswith('DeployedAt=') for arg in cmd)
        assert '--no-fail-on-empty-changeset' in cmd
        # Both calls detached from the terminal so Ctrl-C cannot kill them
        assert all(c.kwargs['new_session'] is True for c in mock_run.call_args_list)

    @patch('providers.cloudformation.run_command')
    def test_update(self, mock_run, provider, descriptor):
        mock_run.side_effect = [_describe_output(), (0, 'Successfully created/updated stack', '')]
        assert provider.apply(descriptor) == ApplyOutcome.UPDATED

    @patch('providers.cloudformation.run_command')
    def test_no_changes(self, mock_run, provider, descriptor):
        mock_run.side_effect = [
            _describe_output(),
            (0, '\nNo changes to deploy. Stack test-vpc is up to date\n', ''),
        ]
        assert provider.apply(descriptor) == ApplyOutcome.UNCHANGED

    @patch('providers.cloudformation.run_command')
    def test_extra_tags(self, mock_run, run_config, descriptor):
        run_config.tags = {'Owner': 'platform'}
        mock_run.side_effect = [NOT_FOUND, (0, '', '')]
        CloudFormationProvider(config=run_config).apply(descriptor)
        assert 'Owner=platform' in mock_run.call_args_list[1][0][0]

    @patch('providers.cloudformation.run_command')
    def test_deploy_failure(self, mock_run, provider, descriptor):
        mock_run.side_effect = [NOT_FOUND, (255, '', 'Waiter StackCreateComplete failed')]
        with pytest.raises(ApplyError, match='Waiter StackCreateComplete failed'):
            provider.apply(descriptor)

    @patch('providers.cloudformation.run_command')
    def test_existence_check_failure(self, mock_run, provider, descriptor):
        mock_run.return_value = (255, '', 'Unable to locate credentials')
        with pytest.raises(ApplyError, match='Could not check stack existence'):
            provider.apply(descriptor)
        assert mock_run.call_count == 1

    @patch('providers.cloudformation.run_command')
    def test_long_error_truncated(self, mock_run, provider, descriptor):
        mock_run.side_effect = [NOT_FOUND, (255, '', 'x' * 2000)]
        with pytest.raises(ApplyError) as exc_info:
            provider.apply(descriptor)
        assert len(exc_info.value.detail) == 503


class TestDelete:
    """Tests for delete() and wait_until_deleted()."""

    @patch('providers.cloudformation.run_command')
    def test_delete(self, mock_run, provider, descriptor):
        mock_run.return_value = (0, '', '')
        provider.delete(descriptor)
        cmd = mock_run.call_args[0][0]
        assert cmd[2:5] == ['delete-stack', '--stack-name', 'test-vpc']

    @patch('providers.cloudformation.run_command')
    def test_delete_failure(self, mock_run, provider, descriptor):
        mock_run.return_value = (255, '', 'AccessDenied')
        with pytest.raises(DeleteError, match='AccessDenied'):
            provider.delete(descriptor)

    @patch('providers.cloudformation.run_command')
    def test_wait_already_gone(self, mock_run, provider, descriptor):
        mock_run.return_value = NOT_FOUND
        provider.wait_until_deleted(descriptor, timeout=60)
        assert provider.sleeps == []

    @patch('providers.cloudformation.run_command')
    def test_wait_polls_until_gone(self, mock_run, provider, descriptor):
        mock_run.side_effect = [
            _describe_output('DELETE_IN_PROGRESS'),
            _describe_output('DELETE_IN_PROGRESS'),
            _describe_output('DELETE_COMPLETE'),
        ]
        provider.wait_until_deleted(descriptor, timeout=60)
        assert mock_run.call_count == 3
        # Backoff doubles from poll_interval
        assert provider.sleeps == [1.0, 2.0]

    @patch('providers.cloudformation.run_command')
    def test_wait_delete_failed(self, mock_run, provider, descriptor):
        mock_run.return_value = _describe_output('DELETE_FAILED')
        with pytest.raises(DeleteError, match='DELETE_FAILED') as exc_info:
            provider.wait_until_deleted(descriptor, timeout=60)
        assert not isinstance(exc_info.value, WaitTimeoutError)

    @patch('providers.cloudformation.poll_until')
    def test_wait_timeout(self, mock_poll, provider, descriptor):
        mock_poll.return_value = None
        with pytest.raises(WaitTimeoutError, match='not complete after 30s') as exc_info:
            provider.wait_until_deleted(descriptor, timeout=30)
        assert exc_info.value.phase == Phase.DELETE
        assert mock_poll.call_args.kwargs['timeout'] == 30


class TestDescribe:
    """Tests for describe()."""

    @patch('providers.cloudformation.run_command')
    def test_outputs(self, mock_run, provider, descriptor):
        mock_run.return_value = _describe_output(outputs=[
            {'OutputKey': 'VpcId', 'OutputValue': 'vpc-0abc'},
            {'OutputKey': 'SubnetIds', 'OutputValue': 'subnet-1,subnet-2'},
        ])
        desc = provider.describe(descriptor)
        assert desc.status == 'CREATE_COMPLETE'
        assert desc.outputs == {'VpcId': 'vpc-0abc', 'SubnetIds': 'subnet-1,subnet-2'}

    @patch('providers.cloudformation.run_command')
    def test_not_found(self, mock_run, provider, descriptor):
        mock_run.return_value = NOT_FOUND
        assert provider.describe(descriptor) is None

    @patch('providers.cloudformation.run_command')
    def test_error(self, mock_run, provider, descriptor):
        mock_run.return_value = (255, '', 'ExpiredToken')
        with pytest.raises(StackOperationError, match='ExpiredToken'):
            provider.describe(descriptor)

    @patch('providers.cloudformation.run_command')
    def test_bad_json(self, mock_run, provider, descriptor):
        mock_run.return_value = (0, 'not json', '')
        with pytest.raises(StackOperationError, match='Unparseable'):
            provider.describe(descriptor)
