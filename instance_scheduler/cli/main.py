"""
Command-line entry point for the instance scheduler.

Runs the same scheduling pass as the Lambda handler, from a workstation or
a CI job.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Dict, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from instance_scheduler import __version__
from instance_scheduler.core.config import ConfigManager
from instance_scheduler.core.exceptions import (
    AuthenticationError, ConfigurationError, RegistryError, SchedulerError, ServiceError, ValidationError
)
from instance_scheduler.registry.accounts import AccountRegistry
from instance_scheduler.services.models import Action, RunSummary
from instance_scheduler.services.operations import MultiAccountScheduler


console = Console()

# Exit codes for different error types
EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_AUTH_ERROR = 3
EXIT_SERVICE_ERROR = 4
EXIT_USER_CANCELLED = 130


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def parse_account_specs(entries: Tuple[str, ...]) -> Dict[str, str]:
    """Turn repeated NAME=ID options into an account map.

    Raises:
        ValidationError: If an entry is not of the form NAME=ID
    """
    accounts = {}
    for entry in entries:
        name, sep, account_id = entry.partition('=')
        name, account_id = name.strip(), account_id.strip()
        if not sep or not name or not account_id.isdigit():
            raise ValidationError(f"Invalid account '{entry}'. Expected NAME=ACCOUNT_ID")
        accounts[name] = account_id
    return accounts


def print_summary(summary: RunSummary) -> None:
    """Render a run summary as rich tables."""
    table = Table(title=f"Instance scheduling: {summary.action.value}")
    table.add_column("Resources")
    table.add_column("Acted upon", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Skipped (Auto Scaling)", justify="right")
    table.add_column("Failed", justify="right")

    table.add_row(
        "EC2 instances",
        str(summary.compute.acted_upon),
        str(summary.compute.skipped_explicit),
        str(summary.compute.skipped_autoscaled),
        str(summary.compute.failed),
    )
    table.add_row(
        "RDS instances",
        str(summary.database.acted_upon),
        str(summary.database.skipped_explicit),
        "-",
        str(summary.database.failed),
    )
    console.print(table)

    members = sorted(summary.member_account_names)
    non_members = sorted(summary.non_member_account_names)
    console.print(f"[green]Member accounts ({len(members)}):[/green] {', '.join(members) or 'none'}")
    if non_members:
        console.print(f"[yellow]Non-member accounts ({len(non_members)}):[/yellow] {', '.join(non_members)}")


@click.command()
@click.option(
    "--action",
    "-a",
    help="start, stop or test (defaults to INSTANCE_SCHEDULING_ACTION)",
)
@click.option(
    "--skip-accounts",
    help="Comma-separated account names to leave alone",
)
@click.option(
    "--region",
    help="AWS region to operate in (defaults to configured region)",
)
@click.option(
    "--role-name",
    help="Role to assume in each member account",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON configuration file",
)
@click.option(
    "--no-environments",
    is_flag=True,
    help="Do not restrict accounts to the environments repository",
)
@click.option(
    "--account",
    "account_specs",
    multiple=True,
    help="NAME=ACCOUNT_ID to schedule instead of reading the account registry (repeatable)",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the response body as JSON",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable debug logging",
)
@click.version_option(version=__version__)
def main(
    action: Optional[str] = None,
    skip_accounts: Optional[str] = None,
    region: Optional[str] = None,
    role_name: Optional[str] = None,
    config_file: Optional[Path] = None,
    no_environments: bool = False,
    account_specs: Tuple[str, ...] = (),
    as_json: bool = False,
    verbose: bool = False,
) -> None:
    """
    Start, stop or test-run scheduling of EC2 and RDS instances across
    member accounts.
    """
    try:
        config = ConfigManager(config_file).load_config(
            region=region,
            role_name=role_name,
            skip_accounts=skip_accounts,
            use_environments_allow_list=False if no_environments else None,
        )
        configure_logging("DEBUG" if verbose else config.log_level)

        # Validate before any account is touched
        scheduled_action = Action.parse(action or config.action)

        if account_specs:
            accounts = parse_account_specs(account_specs)
        else:
            accounts = AccountRegistry(config).load()

        summary = MultiAccountScheduler.from_config(config).run(accounts, scheduled_action)

        if as_json:
            click.echo(json.dumps(summary.to_dict(), indent=2))
        else:
            print_summary(summary)

    except KeyboardInterrupt:
        console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
        sys.exit(EXIT_USER_CANCELLED)
    except (ConfigurationError, ValidationError) as e:
        console.print(f"❌ [red]Configuration error: {escape(str(e))}[/red]")
        sys.exit(EXIT_CONFIG_ERROR)
    except AuthenticationError as e:
        console.print(f"❌ [red]Authentication error: {escape(str(e))}[/red]")
        sys.exit(EXIT_AUTH_ERROR)
    except (ServiceError, RegistryError) as e:
        console.print(f"❌ [red]Service error: {escape(str(e))}[/red]")
        sys.exit(EXIT_SERVICE_ERROR)
    except SchedulerError as e:
        console.print(f"❌ [red]{escape(str(e))}[/red]")
        sys.exit(EXIT_GENERAL_ERROR)
    except Exception as e:
        console.print(f"💥 [red]Unexpected error: {escape(str(e))}[/red]")
        console.print("[dim]Please report this issue with the full error message.[/dim]")
        sys.exit(EXIT_GENERAL_ERROR)


if __name__ == "__main__":
    main()
