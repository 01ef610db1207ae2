"""
Pytest configuration and shared fixtures for instance scheduler tests.
"""

import os
from unittest.mock import Mock, patch

import boto3
import pytest
from moto import mock_aws

from instance_scheduler.auth.elevator import AccountCredentials
from instance_scheduler.services.models import Account, Resource, ResourceFamily


REGION = 'eu-west-2'


@pytest.fixture(scope="session", autouse=True)
def aws_credentials():
    """Fake credentials so no test can reach a real AWS account."""
    with patch.dict(os.environ, {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': REGION,
    }):
        yield


@pytest.fixture
def mock_aws_services():
    """Mock all AWS services used by the application."""
    with mock_aws():
        yield


@pytest.fixture
def session(mock_aws_services):
    return boto3.Session(region_name=REGION)


@pytest.fixture
def member_account():
    return Account(name='example-development', account_id='123456789012')


@pytest.fixture
def credentials(member_account):
    """Elevated credentials backed by a mock session."""
    return AccountCredentials(
        account=member_account,
        role_arn='arn:aws:iam::123456789012:role/InstanceSchedulerAccess',
        session=Mock(),
    )


def compute_instance(instance_id, **tags):
    return Resource(
        family=ResourceFamily.COMPUTE,
        resource_id=instance_id,
        current_state='running',
        tags=dict(tags),
    )


@pytest.fixture
def seven_instances():
    """One instance per instance-scheduling tag variant, none autoscaled."""
    return [
        compute_instance('i-notag'),
        compute_instance('i-default', **{'instance-scheduling': 'default'}),
        compute_instance('i-skip', **{'instance-scheduling': 'skip-scheduling'}),
        compute_instance('i-empty', **{'instance-scheduling': ''}),
        compute_instance('i-invalid', **{'instance-scheduling': 'not-a-valid-value'}),
        compute_instance('i-skipstop', **{'instance-scheduling': 'skip-auto-stop'}),
        compute_instance('i-skipstart', **{'instance-scheduling': 'skip-auto-start'}),
    ]


@pytest.fixture
def nine_instances(seven_instances):
    """The seven tag variants plus two Auto Scaling group members."""
    return seven_instances + [
        compute_instance('i-asg-1', **{'aws:autoscaling:groupName': 'g1'}),
        compute_instance(
            'i-asg-2',
            **{'aws:autoscaling:groupName': 'g1', 'instance-scheduling': 'skip-scheduling'}
        ),
    ]
