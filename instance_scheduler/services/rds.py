"""
RDS service manager for listing and scheduling RDS DB instances.
"""
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .base import BaseServiceManager, ProbeResult
from .models import Action, Resource, ResourceFamily


_IAM_ACTIONS = {
    Action.START: 'rds:StartDBInstance',
    Action.STOP: 'rds:StopDBInstance',
}


class RDSServiceManager(BaseServiceManager):
    """Service manager for RDS DB instances.

    RDS has no dry-run flag. When ``permission_probe`` is enabled the probe
    asks IAM to simulate the start/stop call for the elevated role instead;
    otherwise the probe always allows and the real call reports denials.
    """

    def __init__(
        self,
        session: boto3.Session,
        region: str,
        role_arn: Optional[str] = None,
        permission_probe: bool = False
    ):
        super().__init__(session, region)
        self.role_arn = role_arn
        self.permission_probe = permission_probe and role_arn is not None
        self._iam_client = None

    @property
    def service_name(self) -> str:
        return 'rds'

    @property
    def family(self) -> ResourceFamily:
        return ResourceFamily.DATABASE

    @property
    def iam_client(self):
        if self._iam_client is None:
            self._iam_client = self.session.client('iam', region_name=self.region)
        return self._iam_client

    def list_resources(self) -> List[Resource]:
        """List all RDS DB instances in the region.

        Returns:
            List of DB instances as Resource objects

        Raises:
            ServiceError: If listing fails
        """
        try:
            resources = []
            paginator = self.client.get_paginator('describe_db_instances')

            for page in paginator.paginate():
                for instance in page['DBInstances']:
                    # Skip instances that are being deleted
                    if instance['DBInstanceStatus'] == 'deleting':
                        continue

                    resources.append(Resource(
                        family=ResourceFamily.DATABASE,
                        resource_id=instance['DBInstanceIdentifier'],
                        current_state=instance['DBInstanceStatus'],
                        tags=self._extract_tags(instance),
                        metadata={
                            'arn': instance.get('DBInstanceArn'),
                            'engine': instance.get('Engine'),
                            'instance_class': instance.get('DBInstanceClass'),
                        }
                    ))

            return resources

        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, 'discovery')

    def probe(self, resource: Resource, action: Action) -> ProbeResult:
        if not self.permission_probe:
            return ProbeResult.ALLOWED

        try:
            response = self.iam_client.simulate_principal_policy(
                PolicySourceArn=self.role_arn,
                ActionNames=[_IAM_ACTIONS[action]],
                ResourceArns=[resource.metadata.get('arn') or '*']
            )
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, f'{action.value} permission check', resource.resource_id)

        decisions = [result['EvalDecision'] for result in response.get('EvaluationResults', [])]
        if decisions and all(decision == 'allowed' for decision in decisions):
            return ProbeResult.ALLOWED
        return ProbeResult.DENIED

    def commit(self, resource: Resource, action: Action) -> None:
        """Start or stop the DB instance.

        Does not wait for the instance to reach its final state.
        """
        try:
            if action is Action.START:
                self.client.start_db_instance(DBInstanceIdentifier=resource.resource_id)
            else:
                self.client.stop_db_instance(DBInstanceIdentifier=resource.resource_id)
        except (ClientError, BotoCoreError) as e:
            self._handle_aws_error(e, action.value, resource.resource_id)

    def _extract_tags(self, instance: Dict) -> Dict[str, str]:
        if 'TagList' in instance:
            return {tag['Key']: tag['Value'] for tag in instance['TagList']}

        # Older responses omit TagList
        tag_response = self.client.list_tags_for_resource(ResourceName=instance['DBInstanceArn'])
        return {tag['Key']: tag['Value'] for tag in tag_response['TagList']}
