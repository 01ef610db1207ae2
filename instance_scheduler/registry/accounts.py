"""Builds the account name -> id map that a scheduling run works through."""

import json
import logging
from typing import Dict, Iterable, Optional

import boto3

from instance_scheduler.core.config import Config
from instance_scheduler.core.exceptions import RegistryError
from instance_scheduler.registry.environments import EnvironmentsClient
from instance_scheduler.registry.secrets import get_secret


logger = logging.getLogger(__name__)

PRODUCTION_SUFFIX = '-production'


def parse_account_ids(secret_string: str) -> Dict[str, str]:
    """Parse the environment management secret.

    The secret is a JSON object whose object-valued members (``account_ids``
    in practice) map account names to account ids.

    Raises:
        RegistryError: If the secret is not a JSON object
    """
    try:
        secret = json.loads(secret_string)
    except (TypeError, ValueError) as e:
        raise RegistryError(f"Environment management secret is not valid JSON: {e}")

    if not isinstance(secret, dict):
        raise RegistryError("Environment management secret must be a JSON object")

    accounts = {}
    for record in secret.values():
        if isinstance(record, dict):
            for name, account_id in record.items():
                if isinstance(account_id, str):
                    accounts[name] = account_id
    return accounts


def get_non_production_accounts(
    secret_string: str,
    skip_accounts: Iterable[str] = (),
    allow_list: Optional[Iterable[str]] = None
) -> Dict[str, str]:
    """Select the accounts to schedule from the environment management secret.

    Args:
        secret_string: Raw secret JSON
        skip_accounts: Account names excluded by configuration
        allow_list: If given, only these account names are kept

    Returns:
        Account name -> account id, without production or skipped accounts
    """
    skipped = {name.strip() for name in skip_accounts if name and name.strip()}
    allowed = set(allow_list) if allow_list is not None else None

    accounts = {}
    for name, account_id in parse_account_ids(secret_string).items():
        if name.endswith(PRODUCTION_SUFFIX):
            continue
        if name in skipped:
            logger.info(f"Skipping account {name} listed in INSTANCE_SCHEDULING_SKIP_ACCOUNTS")
            continue
        if allowed is not None and name not in allowed:
            continue
        accounts[name] = account_id

    return accounts


class AccountRegistry:
    """Reads the candidate accounts for a run from Secrets Manager and GitHub."""

    def __init__(
        self,
        config: Config,
        session: Optional[boto3.Session] = None,
        environments_client: Optional[EnvironmentsClient] = None
    ):
        self.config = config
        self.session = session or boto3.Session(region_name=config.region)
        self.environments_client = environments_client or EnvironmentsClient(
            owner=config.environments_owner,
            repo=config.environments_repo_name,
            branch=config.environments_branch,
            directory=config.environments_directory
        )

    def load(self) -> Dict[str, str]:
        """Return the account name -> id map for this run.

        Raises:
            RegistryError: If the secret or the environments listing cannot be read
        """
        client = self.session.client('secretsmanager', region_name=self.config.region)
        secret_string = get_secret(client, self.config.environment_management_secret_id)

        allow_list = None
        if self.config.use_environments_allow_list:
            allow_list = self.environments_client.member_account_names()

        accounts = get_non_production_accounts(secret_string, self.config.skip_accounts, allow_list)
        logger.info(f"Loaded {len(accounts)} candidate accounts from the account registry")
        return accounts
