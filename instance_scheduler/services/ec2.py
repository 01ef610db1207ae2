"""
EC2 service manager for listing and scheduling EC2 instances.
"""
from typing import List

from botocore.exceptions import BotoCoreError, ClientError

from .base import BaseServiceManager, ProbeResult
from .models import Action, Resource, ResourceFamily


DRY_RUN_SUCCEEDED = 'DryRunOperation'
UNAUTHORIZED = 'UnauthorizedOperation'


class EC2ServiceManager(BaseServiceManager):
    """Service manager for EC2 instances."""

    @property
    def service_name(self) -> str:
        return 'ec2'

    @property
    def family(self) -> ResourceFamily:
        return ResourceFamily.COMPUTE

    def list_resources(self) -> List[Resource]:
        """List all EC2 instances in the region.

        Returns:
            List of EC2 instances as Resource objects

        Raises:
            ServiceError: If listing fails
        """
        try:
            resources = []
            paginator = self.client.get_paginator('describe_instances')

            for page in paginator.paginate():
                for reservation in page['Reservations']:
                    for instance in reservation['Instances']:
                        # Terminated instances can no longer be scheduled
                        if instance['State']['Name'] == 'terminated':
                            continue

                        tags = {tag['Key']: tag['Value'] for tag in instance.get('Tags', [])}

                        resources.append(Resource(
                            family=ResourceFamily.COMPUTE,
                            resource_id=instance['InstanceId'],
                            current_state=instance['State']['Name'],
                            tags=tags,
                            metadata={
                                'reservation_id': reservation.get('ReservationId'),
                                'instance_type': instance.get('InstanceType'),
                                'availability_zone': instance.get('Placement', {}).get('AvailabilityZone'),
                            }
                        ))

            return resources

        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'discovery')

    def probe(self, resource: Resource, action: Action) -> ProbeResult:
        """Issue the start/stop call with DryRun set.

        EC2 answers a permitted dry run with the DryRunOperation error code
        and a forbidden one with UnauthorizedOperation.
        """
        try:
            self._call(action, resource.resource_id, dry_run=True)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code == DRY_RUN_SUCCEEDED:
                return ProbeResult.ALLOWED
            if error_code == UNAUTHORIZED:
                return ProbeResult.DENIED
            self._handle_aws_error(e, f'{action.value} dry run', resource.resource_id)
        except BotoCoreError as e:
            self._handle_aws_error(e, f'{action.value} dry run', resource.resource_id)

        return ProbeResult.ALLOWED

    def commit(self, resource: Resource, action: Action) -> None:
        """Start or stop the instance for real."""
        try:
            self._call(action, resource.resource_id, dry_run=False)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, action.value, resource.resource_id)

    def _call(self, action: Action, instance_id: str, dry_run: bool):
        if action is Action.START:
            return self.client.start_instances(InstanceIds=[instance_id], DryRun=dry_run)
        return self.client.stop_instances(InstanceIds=[instance_id], DryRun=dry_run)
