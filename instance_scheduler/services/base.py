"""
Base service manager interface for schedulable AWS services.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import List, Optional
import logging

import boto3

from .models import Action, Resource, ResourceFamily, OperationResult
from ..core.exceptions import ServiceError


logger = logging.getLogger(__name__)


class ProbeResult(str, Enum):
    """Outcome of a permission probe ahead of a state change."""
    ALLOWED = 'allowed'
    DENIED = 'denied'


class BaseServiceManager(ABC):
    """Abstract base class for the EC2 and RDS service managers.

    Besides listing resources, every manager exposes a two step state change
    capability: ``probe`` checks that the caller may perform the action
    without side effects, ``commit`` performs it.
    """

    def __init__(self, session: boto3.Session, region: str):
        """Initialize the service manager with AWS session and region.

        Args:
            session: Session holding the member account's credentials
            region: AWS region to operate in
        """
        self.session = session
        self.region = region
        self._client = None

    @property
    def client(self):
        """Lazy-loaded AWS service client."""
        if self._client is None:
            self._client = self.session.client(self.service_name, region_name=self.region)
        return self._client

    @property
    @abstractmethod
    def service_name(self) -> str:
        """AWS service name ('ec2' or 'rds')."""
        pass

    @property
    @abstractmethod
    def family(self) -> ResourceFamily:
        """Resource family produced by this manager."""
        pass

    @abstractmethod
    def list_resources(self) -> List[Resource]:
        """List every resource of this family in the region, following pagination.

        Returns:
            List of discovered resources

        Raises:
            ServiceError: If listing fails
        """
        pass

    @abstractmethod
    def probe(self, resource: Resource, action: Action) -> ProbeResult:
        """Check that ``action`` is permitted on ``resource`` without changing it.

        Raises:
            ServiceError: If the check itself fails
        """
        pass

    @abstractmethod
    def commit(self, resource: Resource, action: Action) -> None:
        """Perform ``action`` on ``resource``.

        Raises:
            ServiceError: If the call fails
        """
        pass

    def change_state(self, resource: Resource, action: Action) -> OperationResult:
        """Start or stop a resource, probing for permission first.

        The probe always completes before the real call for the same
        resource. A denied probe aborts the change. Errors are returned in
        the result rather than raised.

        Args:
            resource: Resource to change
            action: Action.START or Action.STOP

        Returns:
            Result of the state change
        """
        start_time = datetime.now()
        verb = 'start' if action is Action.START else 'stop'

        try:
            probe_result = self.probe(resource, action)
        except ServiceError as e:
            logger.error(f"ERROR: Could not {verb} {self.family.value} instance {resource.resource_id}: {e}")
            return self._create_operation_result(
                resource=resource,
                operation=action.value,
                success=False,
                message=f"Permission check failed for {resource.resource_id}: {e}",
                start_time=start_time,
                duration=(datetime.now() - start_time).total_seconds()
            )

        if probe_result is ProbeResult.DENIED:
            logger.error(f"ERROR: Not authorized to {verb} {self.family.value} instance {resource.resource_id}")
            result = self._create_operation_result(
                resource=resource,
                operation=action.value,
                success=False,
                message=f"Not authorized to {verb} {resource.resource_id}",
                start_time=start_time,
                duration=(datetime.now() - start_time).total_seconds()
            )
            result.permission_denied = True
            return result

        logger.info(f"User has permission to {verb} {self.family.value} instance {resource.resource_id}.")

        try:
            self.commit(resource, action)
        except ServiceError as e:
            logger.error(f"ERROR: Could not {verb} {self.family.value} instance: {e}")
            return self._create_operation_result(
                resource=resource,
                operation=action.value,
                success=False,
                message=f"Failed to {verb} {resource.resource_id}: {e}",
                start_time=start_time,
                duration=(datetime.now() - start_time).total_seconds()
            )

        logger.info(f"Successfully {action.past_tense.lower()} {self.family.value} instance with Id {resource.resource_id}")
        return self._create_operation_result(
            resource=resource,
            operation=action.value,
            success=True,
            message=f"Successfully {action.past_tense.lower()} {resource.resource_id}",
            start_time=start_time,
            duration=(datetime.now() - start_time).total_seconds()
        )

    def _create_operation_result(
        self,
        resource: Resource,
        operation: str,
        success: bool,
        message: str,
        start_time: datetime,
        duration: Optional[float] = None
    ) -> OperationResult:
        """Helper method to create operation results."""
        return OperationResult(
            success=success,
            resource=resource,
            operation=operation,
            message=message,
            timestamp=start_time,
            duration=duration
        )

    def _handle_aws_error(self, error: Exception, operation: str, resource_id: str = None) -> None:
        """Handle AWS API errors and convert to ServiceError.

        Args:
            error: The original AWS error
            operation: Operation that failed
            resource_id: ID of resource being operated on (if applicable)

        Raises:
            ServiceError: Wrapped error with context
        """
        resource_context = f" for resource {resource_id}" if resource_id else ""
        error_message = f"AWS {self.service_name} {operation} failed{resource_context}: {str(error)}"
        raise ServiceError(error_message, details=str(error))
