"""
Multi-account scheduling: elevate into each candidate account, schedule the
member accounts and aggregate their counts.
"""
from typing import Mapping, Optional, Union
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import threading

import boto3

from .models import Account, AccountResult, Action, RunSummary
from .orchestrator import AccountOrchestrator
from ..auth.elevator import CredentialElevator
from ..core.config import Config


logger = logging.getLogger(__name__)


class MultiAccountScheduler:
    """Runs one scheduling pass over a set of candidate accounts."""

    def __init__(
        self,
        elevator: CredentialElevator,
        orchestrator: AccountOrchestrator,
        account_workers: int = 5
    ):
        """Initialize with the elevation and per-account collaborators.

        Args:
            elevator: Assumes the scheduler role in each account
            orchestrator: Schedules one member account
            account_workers: Maximum number of accounts processed concurrently
        """
        self.elevator = elevator
        self.orchestrator = orchestrator
        self.account_workers = account_workers

    @classmethod
    def from_config(cls, config: Config, base_session: Optional[boto3.Session] = None) -> 'MultiAccountScheduler':
        """Build a scheduler wired from configuration."""
        elevator = CredentialElevator(
            role_name=config.role_name,
            region=config.region,
            base_session=base_session
        )
        orchestrator = AccountOrchestrator(
            region=config.region,
            resource_workers=config.resource_workers,
            rds_permission_probe=config.rds_permission_probe
        )
        return cls(elevator, orchestrator, account_workers=config.account_workers)

    def run(self, accounts: Mapping[str, str], action: Union[Action, str]) -> RunSummary:
        """Schedule every member account among ``accounts``.

        Args:
            accounts: Account name -> account id
            action: Action to perform; validated before any account is touched

        Returns:
            RunSummary with member/non-member names and summed counts

        Raises:
            ValidationError: If the action is invalid
            AuthenticationError: If elevation fails for a reason other than a
                missing role. Queued accounts are cancelled, accounts in
                flight stop before their next state change, and no summary
                is returned.
        """
        action = Action.parse(action)
        summary = RunSummary(action=action)
        candidates = [Account(name=name, account_id=account_id) for name, account_id in sorted(accounts.items())]
        abort = threading.Event()

        logger.info(f"Scheduling {len(candidates)} candidate accounts with action '{action.value}'")

        executor = ThreadPoolExecutor(max_workers=self.account_workers)
        future_to_account = {
            executor.submit(self._schedule_account, account, action, abort): account
            for account in candidates
        }

        try:
            # Single accumulation point for all per-account results
            for future in as_completed(future_to_account):
                account = future_to_account[future]
                result = future.result()
                if result is None:
                    summary.add_non_member(account)
                else:
                    summary.add(result)
        except Exception as e:
            # AuthenticationError, or anything unexpected escaping an account
            logger.error(f"Aborting run: {e}")
            abort.set()
            # Raise now; in-flight accounts wind down on their own
            executor.shutdown(wait=False, cancel_futures=True)
            raise

        executor.shutdown(wait=True)
        self._log_run_summary(summary)
        return summary

    def _schedule_account(
        self,
        account: Account,
        action: Action,
        abort: Optional[threading.Event] = None
    ) -> Optional[AccountResult]:
        """Elevate into one account and schedule it.

        Returns:
            AccountResult for a member account, None for a non-member or
            when the run was aborted before the account started
        """
        if abort is not None and abort.is_set():
            return None

        credentials = self.elevator.elevate(account)
        if credentials is None or (abort is not None and abort.is_set()):
            return None

        logger.info(
            f"BEGIN: Instance scheduling for member account: "
            f"accountName={account.name}, accountId={account.account_id}"
        )
        try:
            result = self.orchestrator.run(credentials, action, abort=abort)
        except Exception as e:
            logger.exception(f"ERROR: Instance scheduling failed for member account {account.name}: {e}")
            result = AccountResult(account=account)
            result.listing_errors.append(str(e))
        logger.info(
            f"END: Instance scheduling for member account: "
            f"accountName={account.name}, accountId={account.account_id}"
        )
        return result

    def _log_run_summary(self, summary: RunSummary) -> None:
        members = sorted(summary.member_account_names)
        non_members = sorted(summary.non_member_account_names)

        if members:
            logger.info(f"END: Instance scheduling for {len(members)} member accounts: {members}")
        else:
            logger.warning("WARN: END: Instance scheduling: No member account was found!")
        if non_members:
            logger.info(
                f"Ignored {len(non_members)} non-member accounts lacking "
                f"{self.elevator.role_name} role: {non_members}"
            )
        logger.info(
            f"Instances: acted upon {summary.compute.acted_upon}, skipped {summary.compute.skipped_explicit}, "
            f"skipped auto scaled {summary.compute.skipped_autoscaled}; RDS instances: acted upon "
            f"{summary.database.acted_upon}, skipped {summary.database.skipped_explicit}"
        )
