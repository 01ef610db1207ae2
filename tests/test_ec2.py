"""Tests for the EC2 service manager."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from instance_scheduler.core.exceptions import ServiceError
from instance_scheduler.services.base import ProbeResult
from instance_scheduler.services.ec2 import EC2ServiceManager
from instance_scheduler.services.models import Action, ResourceFamily

from conftest import REGION, compute_instance


def client_error(code, message='error', operation='StopInstances'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, operation)


def launch(session, count=1, tags=None):
    ec2 = session.client('ec2', region_name=REGION)
    image_id = ec2.describe_images()['Images'][0]['ImageId']
    kwargs = {'ImageId': image_id, 'MinCount': count, 'MaxCount': count, 'InstanceType': 't3.micro'}
    if tags:
        kwargs['TagSpecifications'] = [{
            'ResourceType': 'instance',
            'Tags': [{'Key': k, 'Value': v} for k, v in tags.items()],
        }]
    return [i['InstanceId'] for i in ec2.run_instances(**kwargs)['Instances']]


class TestEC2Listing:

    def test_lists_instances_with_tags(self, session):
        ids = launch(session, count=2, tags={'instance-scheduling': 'skip-auto-stop'})

        resources = EC2ServiceManager(session, REGION).list_resources()

        assert {r.resource_id for r in resources} == set(ids)
        for resource in resources:
            assert resource.family is ResourceFamily.COMPUTE
            assert resource.scheduling_tag == 'skip-auto-stop'
            assert resource.metadata['reservation_id']

    def test_terminated_instances_are_ignored(self, session):
        kept, gone = launch(session, count=2)
        session.client('ec2', region_name=REGION).terminate_instances(InstanceIds=[gone])

        resources = EC2ServiceManager(session, REGION).list_resources()

        assert [r.resource_id for r in resources] == [kept]

    def test_follows_every_page(self):
        manager = EC2ServiceManager(Mock(), REGION)
        paginator = Mock()
        paginator.paginate.return_value = [
            {'Reservations': [{'ReservationId': 'r-1', 'Instances': [
                {'InstanceId': 'i-1', 'State': {'Name': 'running'}},
            ]}]},
            {'Reservations': [{'ReservationId': 'r-2', 'Instances': [
                {'InstanceId': 'i-2', 'State': {'Name': 'stopped'},
                 'Tags': [{'Key': 'aws:autoscaling:groupName', 'Value': 'g1'}]},
            ]}]},
        ]
        manager._client = Mock()
        manager._client.get_paginator.return_value = paginator

        resources = manager.list_resources()

        assert [r.resource_id for r in resources] == ['i-1', 'i-2']
        assert resources[1].autoscaled

    def test_listing_error_raises_service_error(self):
        manager = EC2ServiceManager(Mock(), REGION)
        manager._client = Mock()
        manager._client.get_paginator.side_effect = client_error('AccessDenied', operation='DescribeInstances')

        with pytest.raises(ServiceError, match="discovery"):
            manager.list_resources()


class TestEC2StateChange:

    def test_stop_and_start_running_instance(self, session):
        instance_id, = launch(session)
        manager = EC2ServiceManager(session, REGION)
        ec2 = session.client('ec2', region_name=REGION)

        result = manager.change_state(compute_instance(instance_id), Action.STOP)
        assert result.success
        state = ec2.describe_instances(InstanceIds=[instance_id])['Reservations'][0]['Instances'][0]['State']
        assert state['Name'] in ('stopping', 'stopped')

        result = manager.change_state(compute_instance(instance_id), Action.START)
        assert result.success

    def test_dry_run_operation_means_allowed(self):
        manager = EC2ServiceManager(Mock(), REGION)
        manager._client = Mock()
        manager._client.stop_instances.side_effect = client_error('DryRunOperation')

        assert manager.probe(compute_instance('i-1'), Action.STOP) is ProbeResult.ALLOWED
        manager._client.stop_instances.assert_called_once_with(InstanceIds=['i-1'], DryRun=True)

    def test_unauthorized_operation_means_denied(self):
        manager = EC2ServiceManager(Mock(), REGION)
        manager._client = Mock()
        manager._client.start_instances.side_effect = client_error('UnauthorizedOperation')

        result = manager.change_state(compute_instance('i-1'), Action.START)

        assert not result.success
        assert result.permission_denied
        # Only the dry run was attempted
        manager._client.start_instances.assert_called_once_with(InstanceIds=['i-1'], DryRun=True)

    def test_unexpected_probe_error_fails_the_change(self):
        manager = EC2ServiceManager(Mock(), REGION)
        manager._client = Mock()
        manager._client.stop_instances.side_effect = client_error('IncorrectInstanceState')

        with pytest.raises(ServiceError):
            manager.probe(compute_instance('i-1'), Action.STOP)

        result = manager.change_state(compute_instance('i-1'), Action.STOP)
        assert not result.success
        assert not result.permission_denied

    def test_commit_error_is_reported_not_raised(self):
        manager = EC2ServiceManager(Mock(), REGION)
        manager._client = Mock()
        manager._client.stop_instances.side_effect = [
            client_error('DryRunOperation'),
            client_error('InternalError'),
        ]

        result = manager.change_state(compute_instance('i-1'), Action.STOP)

        assert not result.success
        assert "Failed to stop i-1" in result.message
