"""Configuration management for the instance scheduler."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from instance_scheduler.core.exceptions import ConfigurationError


# Environment variable names mapped to Config fields
ENV_VARS: Dict[str, str] = {
    'action': 'INSTANCE_SCHEDULING_ACTION',
    'skip_accounts': 'INSTANCE_SCHEDULING_SKIP_ACCOUNTS',
    'environment_management_secret_id': 'INSTANCE_SCHEDULING_ENVIRONMENT_MANAGEMENT_SECRET_ID',
    'role_name': 'INSTANCE_SCHEDULING_ROLE_NAME',
    'region': 'INSTANCE_SCHEDULING_REGION',
    'environments_repo': 'INSTANCE_SCHEDULING_ENVIRONMENTS_REPO',
    'environments_branch': 'INSTANCE_SCHEDULING_ENVIRONMENTS_BRANCH',
    'environments_directory': 'INSTANCE_SCHEDULING_ENVIRONMENTS_DIRECTORY',
    'use_environments_allow_list': 'INSTANCE_SCHEDULING_USE_ENVIRONMENTS',
    'account_workers': 'INSTANCE_SCHEDULING_ACCOUNT_WORKERS',
    'resource_workers': 'INSTANCE_SCHEDULING_RESOURCE_WORKERS',
    'rds_permission_probe': 'INSTANCE_SCHEDULING_RDS_PERMISSION_PROBE',
    'log_level': 'INSTANCE_SCHEDULING_LOG_LEVEL',
}

CONFIG_FILE_ENV_VAR = 'INSTANCE_SCHEDULING_CONFIG_FILE'


class Config(BaseModel):
    """Configuration model for a scheduling run."""

    action: Optional[str] = Field(default=None, description="Requested action, validated when the run starts")
    skip_accounts: List[str] = Field(default_factory=list, description="Account names excluded from scheduling")
    environment_management_secret_id: str = Field(
        default="environment_management",
        description="Secrets Manager secret holding the account_ids registry"
    )
    role_name: str = Field(default="InstanceSchedulerAccess", description="Role assumed in every member account")
    region: str = Field(default="eu-west-2", description="AWS region to operate in")
    environments_repo: str = Field(
        default="ministryofjustice/modernisation-platform",
        description="GitHub owner/repo holding the environment definitions"
    )
    environments_branch: str = Field(default="main", description="Branch of the environments repository")
    environments_directory: str = Field(default="environments", description="Directory of environment JSON files")
    use_environments_allow_list: bool = Field(
        default=True,
        description="Restrict accounts to the member environments listed in the environments repository"
    )
    account_workers: int = Field(default=5, description="Accounts processed concurrently")
    resource_workers: int = Field(default=5, description="Resources processed concurrently within an account")
    rds_permission_probe: bool = Field(
        default=False,
        description="Simulate RDS start/stop permissions before the real call"
    )
    log_level: str = Field(default="INFO", description="Logging level name")

    @field_validator('skip_accounts', mode='before')
    @classmethod
    def split_skip_accounts(cls, v):
        """Accept a comma-separated string; blank entries are dropped."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(',')
        return [name.strip() for name in v if name and name.strip()]

    @field_validator('role_name')
    @classmethod
    def validate_role_name(cls, v: str) -> str:
        """Validate IAM role name format."""
        if not re.match(r'^[a-zA-Z0-9+=,.@_-]{1,64}$', v):
            raise ValueError(
                f"Invalid IAM role name: {v}. "
                "Role names are 1-64 characters of letters, digits and +=,.@_-"
            )
        return v

    @field_validator('region')
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        region_pattern = r'^[a-z]{2,3}-[a-z]+-\d+$'
        if not re.match(region_pattern, v):
            raise ValueError(
                f"Invalid AWS region format: {v}. "
                "Expected format: us-east-1, eu-west-2, ap-southeast-3, etc."
            )
        return v

    @field_validator('environments_repo')
    @classmethod
    def validate_environments_repo(cls, v: str) -> str:
        """Validate the owner/repo form of the environments repository."""
        if not re.match(r'^[\w.-]+/[\w.-]+$', v):
            raise ValueError(f"Invalid environments repository: {v}. Expected format: owner/repo")
        return v

    @field_validator('account_workers', 'resource_workers')
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError(f"Worker count must be between 1 and 50, got {v}")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def environments_owner(self) -> str:
        return self.environments_repo.split('/', 1)[0]

    @property
    def environments_repo_name(self) -> str:
        return self.environments_repo.split('/', 1)[1]


class ConfigManager:
    """Builds the run configuration from the environment and an optional JSON file."""

    def __init__(self, config_file: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None):
        """Initialize configuration manager.

        Args:
            config_file: Optional JSON file whose values sit below environment
                         variables. Defaults to $INSTANCE_SCHEDULING_CONFIG_FILE.
            environ: Environment mapping, defaults to os.environ
        """
        self.environ = os.environ if environ is None else environ

        if config_file is None and self.environ.get(CONFIG_FILE_ENV_VAR):
            config_file = Path(self.environ[CONFIG_FILE_ENV_VAR])

        self.config_file = Path(config_file) if config_file is not None else None

    def load_config(self, **overrides) -> Config:
        """Load configuration.

        Precedence, lowest first: model defaults, JSON file, environment
        variables, keyword overrides (None values are ignored).

        Returns:
            Validated Config object.

        Raises:
            ConfigurationError: If the file is unreadable or any value is invalid.
        """
        values = self._read_file()
        values.update(self._read_environment())
        values.update({key: value for key, value in overrides.items() if value is not None})

        try:
            return Config(**values)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}", details=str(e))

    def _read_file(self) -> Dict[str, object]:
        if self.config_file is None:
            return {}

        if not self.config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {self.config_file}")

        try:
            with open(self.config_file, 'r') as f:
                config_data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Invalid configuration file {self.config_file}: {e}")

        if not isinstance(config_data, dict):
            raise ConfigurationError(f"Configuration file {self.config_file} must contain a JSON object")

        return config_data

    def _read_environment(self) -> Dict[str, object]:
        values = {}
        for field_name, env_var in ENV_VARS.items():
            value = self.environ.get(env_var)
            if value is not None and value != '':
                values[field_name] = value

        # Lambda sets AWS_REGION; an explicit scheduler region wins
        if 'region' not in values and self.environ.get('AWS_REGION'):
            values['region'] = self.environ['AWS_REGION']

        return values
