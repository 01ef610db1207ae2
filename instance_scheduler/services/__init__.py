"""AWS service management package."""

from .base import BaseServiceManager, ProbeResult
from .models import (
    Account, AccountResult, Action, Disposition, OperationResult, OutcomeCount,
    Resource, ResourceFamily, RunSummary
)
from .ec2 import EC2ServiceManager
from .rds import RDSServiceManager
from .policy import Decision, evaluate, evaluate_resource

__all__ = [
    'BaseServiceManager',
    'ProbeResult',
    'Account',
    'AccountResult',
    'Action',
    'Disposition',
    'OperationResult',
    'OutcomeCount',
    'Resource',
    'ResourceFamily',
    'RunSummary',
    'EC2ServiceManager',
    'RDSServiceManager',
    'Decision',
    'evaluate',
    'evaluate_resource',
]
