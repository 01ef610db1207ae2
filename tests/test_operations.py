"""Tests for multi-account scheduling runs."""

import threading
import time
from unittest.mock import Mock, patch

import pytest

from instance_scheduler.auth.elevator import AccountCredentials
from instance_scheduler.core.config import Config
from instance_scheduler.core.exceptions import AuthenticationError, ValidationError
from instance_scheduler.services.base import BaseServiceManager, ProbeResult
from instance_scheduler.services.models import AccountResult, Action, OutcomeCount, ResourceFamily
from instance_scheduler.services.operations import MultiAccountScheduler
from instance_scheduler.services.orchestrator import AccountOrchestrator

from conftest import compute_instance


ACCOUNTS = {
    'alpha-development': '111111111111',
    'beta-test': '222222222222',
    'gamma-development': '333333333333',
}


def counts(acted, skipped=0, autoscaled=0):
    return OutcomeCount(acted_upon=acted, skipped_explicit=skipped, skipped_autoscaled=autoscaled)


def make_elevator(non_members=(), fail_for=None):
    elevator = Mock()
    elevator.role_name = 'InstanceSchedulerAccess'

    def elevate(account):
        if account.name == fail_for:
            raise AuthenticationError("ExpiredToken", account_name=account.name)
        if account.name in non_members:
            return None
        return AccountCredentials(account=account, role_arn=f'arn:{account.account_id}', session=Mock())

    elevator.elevate.side_effect = elevate
    return elevator


def make_orchestrator():
    orchestrator = Mock()

    def run(credentials, action, abort=None):
        result = AccountResult(account=credentials.account)
        result.counts[ResourceFamily.COMPUTE] = counts(2, 1, 1)
        result.counts[ResourceFamily.DATABASE] = counts(1, 1)
        return result

    orchestrator.run.side_effect = run
    return orchestrator


class SlowComputeManager(BaseServiceManager):
    """Five instances whose real start/stop calls take a while."""

    def __init__(self, started, commits):
        super().__init__(session=Mock(), region='eu-west-2')
        self.started = started
        self.commits = commits

    @property
    def service_name(self):
        return 'ec2'

    @property
    def family(self):
        return ResourceFamily.COMPUTE

    def list_resources(self):
        return [compute_instance(f'i-{n}') for n in range(5)]

    def probe(self, resource, action):
        self.started.set()
        return ProbeResult.ALLOWED

    def commit(self, resource, action):
        time.sleep(0.2)
        self.commits.append(resource.resource_id)


class TestMultiAccountScheduler:

    def test_sums_counts_of_member_accounts(self):
        scheduler = MultiAccountScheduler(make_elevator(), make_orchestrator())

        summary = scheduler.run(ACCOUNTS, 'stop')

        assert summary.to_dict() == {
            'action': 'stop',
            'memberAccountNames': sorted(ACCOUNTS),
            'nonMemberAccountNames': [],
            'actedUpon': 6,
            'skipped': 3,
            'skippedAutoScaled': 3,
            'rdsActedUpon': 3,
            'rdsSkipped': 3,
        }

    def test_non_member_account_is_never_scheduled(self):
        orchestrator = make_orchestrator()
        scheduler = MultiAccountScheduler(make_elevator(non_members={'beta-test'}), orchestrator)

        summary = scheduler.run(ACCOUNTS, Action.TEST)

        assert summary.non_member_account_names == ['beta-test']
        assert 'beta-test' not in summary.member_account_names
        scheduled = {call.args[0].account.name for call in orchestrator.run.call_args_list}
        assert scheduled == {'alpha-development', 'gamma-development'}
        assert summary.compute.acted_upon == 4

    def test_invalid_action_touches_no_account(self):
        elevator = make_elevator()
        orchestrator = make_orchestrator()
        scheduler = MultiAccountScheduler(elevator, orchestrator)

        with pytest.raises(ValidationError, match="Invalid Action"):
            scheduler.run(ACCOUNTS, 'INVALID')

        elevator.elevate.assert_not_called()
        orchestrator.run.assert_not_called()

    def test_authentication_failure_aborts_the_run(self):
        scheduler = MultiAccountScheduler(
            make_elevator(fail_for='beta-test'), make_orchestrator(), account_workers=1
        )

        with pytest.raises(AuthenticationError):
            scheduler.run(ACCOUNTS, 'start')

    def test_authentication_failure_cancels_pending_accounts(self):
        release = threading.Event()
        elevator = make_elevator(fail_for='alpha-development')
        original = elevator.elevate.side_effect

        def elevate(account):
            if account.name != 'alpha-development':
                release.wait(timeout=1)
            return original(account)

        elevator.elevate.side_effect = elevate
        orchestrator = make_orchestrator()
        many = {f'zone{n:02d}-development': f'{n:012d}' for n in range(10)}
        many['alpha-development'] = '111111111111'
        scheduler = MultiAccountScheduler(elevator, orchestrator, account_workers=2)

        with pytest.raises(AuthenticationError):
            scheduler.run(many, 'stop')
        release.set()

        # Accounts queued behind the failure were cancelled
        assert elevator.elevate.call_count < len(many)

    def test_authentication_failure_stops_accounts_already_running(self):
        started = threading.Event()
        commits = []
        elevator = make_elevator(fail_for='b-fails')
        original = elevator.elevate.side_effect

        def elevate(account):
            if account.name == 'b-fails':
                started.wait(timeout=5)
            return original(account)

        elevator.elevate.side_effect = elevate
        compute = SlowComputeManager(started, commits)
        database = Mock(family=ResourceFamily.DATABASE)
        database.list_resources.return_value = []
        orchestrator = AccountOrchestrator(region='eu-west-2', resource_workers=1)
        scheduler = MultiAccountScheduler(elevator, orchestrator, account_workers=2)

        with patch.object(orchestrator, 'get_service_manager', side_effect=lambda family, creds: (
            compute if family is ResourceFamily.COMPUTE else database
        )):
            with pytest.raises(AuthenticationError):
                scheduler.run({'a-runs': '111111111111', 'b-fails': '222222222222'}, 'stop')
            committed_when_raised = len(commits)
            time.sleep(1.5)

        # Only the change already underway may still complete
        assert len(commits) <= committed_when_raised + 1
        assert len(commits) < 5

    def test_orchestration_error_is_contained_to_the_account(self):
        orchestrator = make_orchestrator()
        original = orchestrator.run.side_effect

        def run(credentials, action, abort=None):
            if credentials.account.name == 'beta-test':
                raise RuntimeError("boom")
            return original(credentials, action, abort)

        orchestrator.run.side_effect = run
        scheduler = MultiAccountScheduler(make_elevator(), orchestrator)

        summary = scheduler.run(ACCOUNTS, 'stop')

        assert sorted(summary.member_account_names) == sorted(ACCOUNTS)
        assert summary.compute.acted_upon == 4

    def test_no_accounts(self):
        summary = MultiAccountScheduler(make_elevator(), make_orchestrator()).run({}, 'test')

        assert summary.to_dict()['memberAccountNames'] == []
        assert summary.compute.total == 0

    def test_from_config(self):
        config = Config(role_name='CustomRole', account_workers=3, resource_workers=7, rds_permission_probe=True)

        scheduler = MultiAccountScheduler.from_config(config, base_session=Mock())

        assert scheduler.account_workers == 3
        assert scheduler.elevator.role_name == 'CustomRole'
        assert scheduler.orchestrator.resource_workers == 7
        assert scheduler.orchestrator.rds_permission_probe is True
