"""
Data models for instance scheduling.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any

from ..core.exceptions import ValidationError


SCHEDULING_TAG_KEY = 'instance-scheduling'
AUTOSCALING_GROUP_TAG_KEY = 'aws:autoscaling:groupName'


class ResourceFamily(str, Enum):
    """Kinds of resource the scheduler manages."""
    COMPUTE = 'ec2'
    DATABASE = 'rds'

    @property
    def supports_autoscaling(self) -> bool:
        """Only compute instances can belong to an Auto Scaling group."""
        return self is ResourceFamily.COMPUTE

    @property
    def noun(self) -> str:
        return 'instances' if self is ResourceFamily.COMPUTE else 'RDS instances'


class Action(str, Enum):
    """Scheduling action requested for a run."""
    START = 'start'
    STOP = 'stop'
    TEST = 'test'

    @classmethod
    def parse(cls, raw: Optional[str]) -> 'Action':
        """Normalize a raw action string.

        Raises:
            ValidationError: If the value is not start, stop or test
        """
        if isinstance(raw, Action):
            return raw
        value = (raw or '').strip().lower()
        for action in cls:
            if action.value == value:
                return action
        raise ValidationError(
            "Invalid Action. Must be one of 'start' 'stop' 'test'",
            details=f"received {raw!r}"
        )

    @property
    def past_tense(self) -> str:
        return {'start': 'Started', 'stop': 'Stopped', 'test': 'Tested'}[self.value]

    @property
    def mutates(self) -> bool:
        return self is not Action.TEST


class Disposition(str, Enum):
    """Outcome of the scheduling policy for one resource."""
    ACT = 'act'
    SKIP_EXPLICIT = 'skip-explicit'
    SKIP_AUTOSCALED = 'skip-autoscaled'


@dataclass(frozen=True)
class Account:
    """A member account candidate from the account registry."""
    name: str                  # e.g. 'example-development'
    account_id: str            # 12 digit AWS account id


@dataclass
class Resource:
    """Represents an EC2 or RDS instance that can be started/stopped."""
    family: ResourceFamily      # COMPUTE or DATABASE
    resource_id: str            # Instance ID or DB identifier
    current_state: str          # Operational state at discovery time
    tags: Dict[str, str]        # Resource tags
    metadata: Dict[str, Any] = field(default_factory=dict)  # Service-specific metadata

    @property
    def scheduling_tag(self) -> str:
        """Value of the instance-scheduling tag, empty when absent."""
        return self.tags.get(SCHEDULING_TAG_KEY, '')

    @property
    def autoscaled(self) -> bool:
        """True if an Auto Scaling group owns this resource's lifecycle."""
        return self.family.supports_autoscaling and AUTOSCALING_GROUP_TAG_KEY in self.tags

    def describe_tag(self) -> str:
        if self.scheduling_tag == '':
            return "with instance-scheduling tag being absent"
        return f"with instance-scheduling tag having value '{self.scheduling_tag}'"


@dataclass
class OperationResult:
    """Result of a state change (start, stop) on one resource."""
    success: bool
    resource: Resource
    operation: str             # 'start' or 'stop'
    message: str               # Success/error message
    timestamp: datetime
    duration: Optional[float] = None  # Operation duration in seconds
    permission_denied: bool = False   # Probe reported the caller lacks permission


@dataclass
class OutcomeCount:
    """Per-family tally of policy outcomes.

    ``failed`` counts acted-upon resources whose state change was not
    confirmed; it is a subset of ``acted_upon``, not a separate bucket.
    """
    acted_upon: int = 0
    skipped_explicit: int = 0
    skipped_autoscaled: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.acted_upon + self.skipped_explicit + self.skipped_autoscaled

    def record(self, disposition: Disposition) -> None:
        if disposition is Disposition.ACT:
            self.acted_upon += 1
        elif disposition is Disposition.SKIP_EXPLICIT:
            self.skipped_explicit += 1
        else:
            self.skipped_autoscaled += 1

    def __add__(self, other: 'OutcomeCount') -> 'OutcomeCount':
        return OutcomeCount(
            acted_upon=self.acted_upon + other.acted_upon,
            skipped_explicit=self.skipped_explicit + other.skipped_explicit,
            skipped_autoscaled=self.skipped_autoscaled + other.skipped_autoscaled,
            failed=self.failed + other.failed,
        )


@dataclass
class AccountResult:
    """Outcome of scheduling one member account."""
    account: Account
    counts: Dict[ResourceFamily, OutcomeCount] = field(
        default_factory=lambda: {family: OutcomeCount() for family in ResourceFamily}
    )
    listing_errors: List[str] = field(default_factory=list)


@dataclass
class RunSummary:
    """Aggregated result of one scheduling run across all accounts."""
    action: Action
    member_account_names: List[str] = field(default_factory=list)
    non_member_account_names: List[str] = field(default_factory=list)
    compute: OutcomeCount = field(default_factory=OutcomeCount)
    database: OutcomeCount = field(default_factory=OutcomeCount)

    def add(self, result: AccountResult) -> None:
        """Fold a member account's result into the run totals."""
        self.member_account_names.append(result.account.name)
        self.compute = self.compute + result.counts[ResourceFamily.COMPUTE]
        self.database = self.database + result.counts[ResourceFamily.DATABASE]

    def add_non_member(self, account: Account) -> None:
        self.non_member_account_names.append(account.name)

    def to_dict(self) -> Dict[str, Any]:
        """Response body consumed by callers of the scheduler."""
        return {
            'action': self.action.value,
            'memberAccountNames': sorted(self.member_account_names),
            'nonMemberAccountNames': sorted(self.non_member_account_names),
            'actedUpon': self.compute.acted_upon,
            'skipped': self.compute.skipped_explicit,
            'skippedAutoScaled': self.compute.skipped_autoscaled,
            'rdsActedUpon': self.database.acted_upon,
            'rdsSkipped': self.database.skipped_explicit,
        }
