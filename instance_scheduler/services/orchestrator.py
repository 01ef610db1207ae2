"""
Per-account orchestration: list each resource family, apply the scheduling
policy and carry out the resulting state changes.
"""
from typing import Dict, List, Optional, Tuple, Type, TYPE_CHECKING
from datetime import datetime
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import threading

from .base import BaseServiceManager
from .models import (
    Action, AccountResult, Disposition, OperationResult, OutcomeCount, Resource, ResourceFamily
)
from .ec2 import EC2ServiceManager
from .rds import RDSServiceManager
from .policy import Decision, evaluate_resource
from ..core.exceptions import ServiceError

if TYPE_CHECKING:
    from ..auth.elevator import AccountCredentials


logger = logging.getLogger(__name__)


class AccountOrchestrator:
    """Schedules every EC2 and RDS instance of one member account."""

    def __init__(self, region: str, resource_workers: int = 5, rds_permission_probe: bool = False):
        """Initialize the orchestrator.

        Args:
            region: AWS region to operate in
            resource_workers: Maximum number of concurrent state changes
            rds_permission_probe: Simulate RDS permissions before start/stop
        """
        self.region = region
        self.resource_workers = resource_workers
        self.rds_permission_probe = rds_permission_probe

        # Service manager classes
        self.service_managers: Dict[ResourceFamily, Type[BaseServiceManager]] = {
            ResourceFamily.COMPUTE: EC2ServiceManager,
            ResourceFamily.DATABASE: RDSServiceManager,
        }

    def get_service_manager(self, family: ResourceFamily, credentials: 'AccountCredentials') -> BaseServiceManager:
        """Create a service manager bound to the account's credentials.

        Raises:
            ServiceError: If the family is not supported
        """
        if family not in self.service_managers:
            raise ServiceError(f"Unsupported resource family: {family}")

        manager_class = self.service_managers[family]
        if manager_class is RDSServiceManager:
            return manager_class(
                credentials.session,
                self.region,
                role_arn=credentials.role_arn,
                permission_probe=self.rds_permission_probe
            )
        return manager_class(credentials.session, self.region)

    def run(
        self,
        credentials: 'AccountCredentials',
        action: Action,
        abort: Optional[threading.Event] = None
    ) -> AccountResult:
        """Schedule all resources of the account.

        A family that cannot be listed contributes zero counts; the other
        family is still processed.

        Args:
            credentials: Elevated credentials for the account
            action: Validated action for this run
            abort: Set when the run has failed; no further family is started

        Returns:
            AccountResult with per-family counts
        """
        account = credentials.account
        result = AccountResult(account=account)

        for family in ResourceFamily:
            if abort is not None and abort.is_set():
                logger.warning(f"WARN: Run aborted, not scheduling {family.noun} in {account.name}")
                break

            manager = self.get_service_manager(family, credentials)

            try:
                resources = manager.list_resources()
            except Exception as e:
                error_msg = (
                    f"ERROR: Could not retrieve information about {family.noun} "
                    f"in member account {account.name}: {e}"
                )
                logger.error(error_msg)
                result.listing_errors.append(error_msg)
                continue

            logger.info(f"Discovered {len(resources)} {family.noun} in {account.name}")

            counts, _ = self.schedule_resources(manager, resources, action, abort=abort)
            result.counts[family] = counts

        return result

    def schedule_resources(
        self,
        manager: BaseServiceManager,
        resources: List[Resource],
        action: Action,
        abort: Optional[threading.Event] = None
    ) -> Tuple[OutcomeCount, List[OperationResult]]:
        """Classify each resource and apply start/stop where the policy says so.

        Returns:
            Tuple of (counts, operation_results)
        """
        counts = OutcomeCount()
        classified: Dict[Disposition, List[str]] = {disposition: [] for disposition in Disposition}
        pending: List[Tuple[Resource, Decision]] = []

        for resource in resources:
            decision = evaluate_resource(resource, action)
            counts.record(decision.disposition)
            classified[decision.disposition].append(resource.resource_id)
            logger.info(self._describe_decision(resource, decision, action))

            if decision.directive is not None:
                pending.append((resource, decision))

        operation_results = self._change_states(manager, pending, abort)
        counts.failed = len([r for r in operation_results if not r.success])

        self._log_family_summary(manager.family, action, classified)
        return counts, operation_results

    def _change_states(
        self,
        manager: BaseServiceManager,
        pending: List[Tuple[Resource, Decision]],
        abort: Optional[threading.Event] = None
    ) -> List[OperationResult]:
        if not pending:
            return []

        operation_results = []

        # Each worker runs the probe and the real call for its resource in order
        with ThreadPoolExecutor(max_workers=self.resource_workers) as executor:
            future_to_resource = {
                executor.submit(self._change_state, manager, resource, decision.directive, abort): (resource, decision)
                for resource, decision in pending
            }

            for future in as_completed(future_to_resource):
                resource, decision = future_to_resource[future]
                try:
                    operation_results.append(future.result())
                except Exception as e:
                    # change_state reports AWS errors itself; this is a last resort
                    logger.exception(f"Unexpected error changing state of {resource.resource_id}: {e}")
                    operation_results.append(OperationResult(
                        success=False,
                        resource=resource,
                        operation=decision.directive.value,
                        message=f"Unexpected error: {str(e)}",
                        timestamp=datetime.now(),
                        duration=0.0
                    ))

        return operation_results

    def _change_state(
        self,
        manager: BaseServiceManager,
        resource: Resource,
        action: Action,
        abort: Optional[threading.Event]
    ) -> OperationResult:
        if abort is not None and abort.is_set():
            return OperationResult(
                success=False,
                resource=resource,
                operation=action.value,
                message=f"Cancelled: run aborted before {action.value} of {resource.resource_id}",
                timestamp=datetime.now(),
                duration=0.0
            )
        return manager.change_state(resource, action)

    def _describe_decision(self, resource: Resource, decision: Decision, action: Action) -> str:
        reservation = resource.metadata.get('reservation_id')
        subject = f"instance {resource.resource_id}"
        if reservation:
            subject += f" (ReservationId: {reservation})"

        if decision.disposition is Disposition.SKIP_AUTOSCALED:
            return (
                f"Skipped {subject} with aws:autoscaling:groupName tag "
                "because it is part of an Auto Scaling group"
            )
        if decision.disposition is Disposition.SKIP_EXPLICIT:
            return f"Skipped {subject} {resource.describe_tag()}"
        return f"{action.value} {subject} {resource.describe_tag()}"

    def _log_family_summary(
        self,
        family: ResourceFamily,
        action: Action,
        classified: Dict[Disposition, List[str]]
    ) -> None:
        acted = classified[Disposition.ACT]
        skipped = classified[Disposition.SKIP_EXPLICIT]
        autoscaled = classified[Disposition.SKIP_AUTOSCALED]

        if acted:
            logger.info(f"{action.past_tense} {len(acted)} {family.noun}: {acted}")
        else:
            logger.warning(f"WARN: No {family.noun} found to {action.value}!")
        if skipped:
            logger.info(f"Skipped {len(skipped)} {family.noun} due to instance-scheduling tag: {skipped}")
        if autoscaled:
            logger.info(f"Skipped {len(autoscaled)} {family.noun} due to aws:autoscaling:groupName tag: {autoscaled}")
