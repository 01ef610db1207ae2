"""Readers for values held in Secrets Manager and SSM Parameter Store."""

import logging

from botocore.exceptions import BotoCoreError, ClientError

from instance_scheduler.core.exceptions import RegistryError


logger = logging.getLogger(__name__)


def get_secret(client, secret_id: str) -> str:
    """Return the current SecretString of a Secrets Manager secret.

    Args:
        client: boto3 secretsmanager client
        secret_id: Secret name or ARN

    Raises:
        RegistryError: If the secret cannot be read
    """
    logger.debug(f"Reading secret {secret_id}")
    try:
        result = client.get_secret_value(SecretId=secret_id, VersionStage='AWSCURRENT')
    except (ClientError, BotoCoreError) as e:
        raise RegistryError(f"Failed to read secret {secret_id}: {e}", details=str(e))

    if 'SecretString' not in result:
        raise RegistryError(f"Secret {secret_id} has no string value")
    return result['SecretString']


def get_parameter(client, parameter_name: str) -> str:
    """Return the decrypted value of an SSM parameter.

    Raises:
        RegistryError: If the parameter cannot be read
    """
    logger.debug(f"Reading parameter {parameter_name}")
    try:
        result = client.get_parameter(Name=parameter_name, WithDecryption=True)
    except (ClientError, BotoCoreError) as e:
        raise RegistryError(f"Failed to read parameter {parameter_name}: {e}", details=str(e))
    return result['Parameter']['Value']
