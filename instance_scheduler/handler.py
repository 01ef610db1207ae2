"""Lambda handler for scheduled instance start/stop runs."""

import json
import logging
from typing import Any, Dict, Optional

from instance_scheduler import __version__
from instance_scheduler.core.config import ConfigManager
from instance_scheduler.core.exceptions import ConfigurationError, SchedulerError, ValidationError
from instance_scheduler.registry.accounts import AccountRegistry
from instance_scheduler.services.models import Action
from instance_scheduler.services.operations import MultiAccountScheduler


logger = logging.getLogger(__name__)


def requested_action(event: Any) -> Optional[str]:
    """Extract the action from a direct, EventBridge or API Gateway event."""
    if not isinstance(event, dict):
        return None

    for key in ('action', 'Action'):
        if event.get(key):
            return event[key]

    body = event.get('body')
    if isinstance(body, str) and body:
        try:
            body = json.loads(body)
        except ValueError:
            return None
    if isinstance(body, dict):
        return body.get('action') or body.get('Action')

    return None


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Run one scheduling pass.

    Args:
        event: Lambda event; may carry the action, otherwise
               INSTANCE_SCHEDULING_ACTION is used
        context: Lambda context object

    Returns:
        Response dict with statusCode and a JSON body holding the tally
    """
    raw_action = requested_action(event)

    try:
        config = ConfigManager().load_config()
        logging.getLogger().setLevel(config.log_level)

        raw_action = raw_action or config.action
        action = Action.parse(raw_action)

        logger.info(f"BEGIN: Instance scheduling v{__version__}")
        logger.info(f"INSTANCE_SCHEDULING_ACTION={action.value}")
        logger.info(f"INSTANCE_SCHEDULING_SKIP_ACCOUNTS={','.join(config.skip_accounts)}")
        logger.info(
            f"INSTANCE_SCHEDULING_ENVIRONMENT_MANAGEMENT_SECRET_ID={config.environment_management_secret_id}"
        )

        accounts = AccountRegistry(config).load()
        summary = MultiAccountScheduler.from_config(config).run(accounts, action)

    except (ConfigurationError, ValidationError) as e:
        logger.error(f"ERROR: {e.message}")
        return _error_response(400, raw_action, e)
    except SchedulerError as e:
        logger.error(f"ERROR: Instance scheduling failed: {e.message}")
        return _error_response(500, raw_action, e)

    return {
        "statusCode": 200,
        "body": json.dumps(summary.to_dict()),
    }


def _error_response(status_code: int, raw_action: Optional[str], error: SchedulerError) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "body": json.dumps({
            "action": raw_action,
            "error": error.message,
        }),
    }
