"""Credential elevation into member accounts via STS assume role."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from instance_scheduler.core.exceptions import AuthenticationError
from instance_scheduler.services.models import Account


logger = logging.getLogger(__name__)

NOT_AUTHORIZED_TO_ASSUME_ROLE = 'is not authorized to perform: sts:AssumeRole'


@dataclass(frozen=True)
class AccountCredentials:
    """Credentials scoped to one member account for the rest of a run."""
    account: Account
    role_arn: str
    session: boto3.Session
    expiration: Optional[datetime] = None


class CredentialElevator:
    """Assumes the scheduler role in member accounts.

    ``elevate`` returns ``None`` for accounts that do not carry the role and
    raises ``AuthenticationError`` for every other failure. Nothing is cached
    between accounts: each call builds its own session.
    """

    def __init__(
        self,
        role_name: str = 'InstanceSchedulerAccess',
        region: str = 'eu-west-2',
        base_session: Optional[boto3.Session] = None,
        duration_seconds: int = 3600
    ):
        """Initialize the elevator.

        Args:
            role_name: Name of the role present in every member account
            region: Region used for the sessions and the probe call
            base_session: Session holding the scheduler's own credentials
            duration_seconds: Lifetime of the assumed role credentials
        """
        self.role_name = role_name
        self.region = region
        self.duration_seconds = duration_seconds
        self.base_session = base_session or boto3.Session(region_name=region)
        # Clients are thread safe, sessions are not: build it once up front
        self.sts_client = self.base_session.client('sts', region_name=region)

    def role_arn_for(self, account_id: str) -> str:
        return f"arn:aws:iam::{account_id}:role/{self.role_name}"

    def elevate(self, account: Account) -> Optional[AccountCredentials]:
        """Assume the scheduler role in ``account`` and check it is usable.

        Args:
            account: Target account

        Returns:
            AccountCredentials, or None if the account is not a member account.

        Raises:
            AuthenticationError: If elevation fails for any other reason.
        """
        role_arn = self.role_arn_for(account.account_id)

        try:
            logger.debug(f"Assuming role {role_arn} for account {account.name}")
            response = self.sts_client.assume_role(
                RoleArn=role_arn,
                RoleSessionName=f"instance-scheduler-{account.account_id}",
                DurationSeconds=self.duration_seconds
            )
            credentials = response['Credentials']

            session = boto3.Session(
                aws_access_key_id=credentials['AccessKeyId'],
                aws_secret_access_key=credentials['SecretAccessKey'],
                aws_session_token=credentials['SessionToken'],
                region_name=self.region
            )

            # Cheap read-only call to confirm the credentials are usable
            session.client('ec2', region_name=self.region).describe_instances(MaxResults=5)

        except ClientError as e:
            if self._is_not_member(e):
                logger.warning(
                    f"WARN: account {account.name} ({account.account_id}) is ignored because it does not "
                    f"have the role {self.role_name}, therefore is not a member account"
                )
                return None

            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            error_message = e.response.get('Error', {}).get('Message', str(e))
            raise AuthenticationError(
                f"Failed to elevate into account {account.name} ({account.account_id}): "
                f"{error_code} - {error_message}",
                details=str(e),
                account_name=account.name
            )

        except NoCredentialsError:
            raise AuthenticationError(
                "No AWS credentials found for the scheduler. Configure credentials using:\n"
                "1. The Lambda execution role\n"
                "2. Environment variables: AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY\n"
                "3. AWS CLI: aws configure",
                account_name=account.name
            )

        except BotoCoreError as e:
            raise AuthenticationError(
                f"AWS configuration error elevating into account {account.name}: {e}",
                details=str(e),
                account_name=account.name
            )

        logger.info(f"Assumed role {role_arn} in account {account.name}")
        return AccountCredentials(
            account=account,
            role_arn=role_arn,
            session=session,
            expiration=credentials.get('Expiration')
        )

    @staticmethod
    def _is_not_member(error: ClientError) -> bool:
        error_info = error.response.get('Error', {})
        if error_info.get('Code') == 'AccessDenied' and error.operation_name == 'AssumeRole':
            return True
        message = error_info.get('Message', '')
        return NOT_AUTHORIZED_TO_ASSUME_ROLE in message or NOT_AUTHORIZED_TO_ASSUME_ROLE in str(error)
