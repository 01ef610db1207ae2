"""Reads the in-scope environments from the environment definitions on GitHub.

Each JSON file in the environments directory describes one business unit.
Files with ``"account-type": "member"`` contribute one account name per
entry in their ``environments`` list, formed as ``{file name}-{environment
name}``. Production environments and environments flagged with
``instance_scheduler_skip`` are left out.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from instance_scheduler.core.exceptions import RegistryError


logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com/repos"
GITHUB_RAW_URL = "https://raw.githubusercontent.com"


def has_instance_scheduler_skip(environment: Dict[str, Any]) -> bool:
    """True if the environment opts out of instance scheduling.

    The flag is accepted as ``"true"``, ``true`` or a list containing ``"true"``.
    """
    skip = environment.get('instance_scheduler_skip')
    if isinstance(skip, list):
        return 'true' in skip
    return skip is True or skip == 'true'


def extract_names(content: Dict[str, Any], env_name: str) -> List[str]:
    """Return the schedulable environment names of one definition file.

    Args:
        content: Parsed JSON content of the file
        env_name: File name without extension, used for logging

    Returns:
        Environment names, excluding production and skipped environments
    """
    names = []
    for environment in content.get('environments') or []:
        if not isinstance(environment, dict):
            continue

        name = environment.get('name')
        if not name:
            continue

        if has_instance_scheduler_skip(environment):
            logger.info(f"extractNames - Skipping due to instance_scheduler_skip: {env_name}.{name}")
            continue

        if name == 'production':
            logger.debug(f"extractNames - Skipping due to production: {env_name}.{name}")
            continue

        names.append(name)

    return names


class EnvironmentsClient:
    """Fetches environment definition files from a GitHub repository."""

    def __init__(
        self,
        owner: str,
        repo: str,
        branch: str = 'main',
        directory: str = 'environments',
        api_base_url: str = GITHUB_API_URL,
        raw_base_url: str = GITHUB_RAW_URL,
        timeout: int = 10
    ):
        """Initialize the client.

        Args:
            owner: Repository owner
            repo: Repository name
            branch: Branch to read
            directory: Directory holding the JSON definitions
            api_base_url: GitHub API base, including the /repos segment
            raw_base_url: Base URL for raw file content
            timeout: HTTP request timeout in seconds
        """
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.directory = directory
        self.api_base_url = api_base_url.rstrip('/')
        self.raw_base_url = raw_base_url.rstrip('/')
        self.timeout = timeout

    def list_files(self) -> List[Dict[str, Any]]:
        """List the entries of the environments directory.

        Raises:
            RegistryError: If the listing cannot be fetched or parsed
        """
        url = f"{self.api_base_url}/{self.owner}/{self.repo}/contents/{self.directory}"

        try:
            response = requests.get(
                url,
                params={'ref': self.branch},
                headers={'User-Agent': 'instance-scheduler', 'Accept': 'application/vnd.github+json'},
                timeout=self.timeout,
            )
            response.raise_for_status()
            files = response.json()
        except requests.exceptions.RequestException as e:
            raise RegistryError(f"Failed to fetch directory listing from GitHub: {e}", details=str(e))
        except ValueError as e:
            raise RegistryError(f"Failed to process GitHub data: {e}", details=str(e))

        if not isinstance(files, list):
            raise RegistryError(f"Unexpected GitHub directory listing for {url}")
        return files

    def fetch_json(self, url: str) -> Optional[Dict[str, Any]]:
        """Fetch one JSON document, returning None if it cannot be read."""
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            content = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Error fetching {url}: {e}")
            return None

        if not isinstance(content, dict):
            logger.warning(f"Ignoring {url}: expected a JSON object")
            return None
        return content

    def member_account_names(self) -> List[str]:
        """Return ``{file}-{environment}`` names of all schedulable member environments.

        Raises:
            RegistryError: If the directory listing cannot be read
        """
        result = []

        for entry in self.list_files():
            file_name = entry.get('name', '')
            if entry.get('type') != 'file' or not file_name.endswith('.json'):
                continue

            raw_url = f"{self.raw_base_url}/{self.owner}/{self.repo}/{self.branch}/{entry['path']}"
            content = self.fetch_json(raw_url)
            if content is None:
                continue

            # Only member accounts are scheduled
            if content.get('account-type') != 'member':
                continue

            file_stem = file_name[:-len('.json')]
            names = extract_names(content, file_stem)
            if not names:
                logger.debug(f"No names extracted, skipping file: {file_name}")
                continue

            result.extend(f"{file_stem}-{name}" for name in names)

        logger.info(f"Found {len(result)} in-scope environments in {self.owner}/{self.repo}")
        return result
