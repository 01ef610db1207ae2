"""
Scheduling policy: decides what happens to a resource for a requested action.

The ``instance-scheduling`` tag accepts ``default`` (same as no tag),
``skip-scheduling``, ``skip-auto-stop`` and ``skip-auto-start``. Any other
value, including an empty one, is treated as ``default`` so a mistyped tag
never exempts a resource from scheduling.
"""
from dataclasses import dataclass
from typing import Optional

from .models import Action, Disposition, Resource


SKIP_SCHEDULING = 'skip-scheduling'
SKIP_AUTO_STOP = 'skip-auto-stop'
SKIP_AUTO_START = 'skip-auto-start'

# Tag value -> the action it opts out of
_SKIPPED_ACTION = {
    SKIP_AUTO_STOP: Action.STOP,
    SKIP_AUTO_START: Action.START,
}


@dataclass(frozen=True)
class Decision:
    """Policy outcome for one resource."""
    disposition: Disposition
    directive: Optional[Action] = None  # START/STOP to execute, None for skips and tests

    @property
    def acts(self) -> bool:
        return self.disposition is Disposition.ACT


def evaluate(scheduling_tag: Optional[str], autoscaled: bool, action: Action) -> Decision:
    """Apply the scheduling priority table.

    1. Auto Scaling group members are always skipped.
    2. ``skip-scheduling`` is skipped for every action.
    3. ``skip-auto-stop`` / ``skip-auto-start`` skip their own action and the
       test action, and act on the opposite one.
    4. Anything else is acted upon.

    Args:
        scheduling_tag: Value of the instance-scheduling tag, None or '' if absent
        autoscaled: Whether the resource belongs to an Auto Scaling group
        action: Validated action for this run

    Returns:
        Decision with the disposition and, for start/stop, the directive
    """
    if autoscaled:
        return Decision(Disposition.SKIP_AUTOSCALED)

    if scheduling_tag == SKIP_SCHEDULING:
        return Decision(Disposition.SKIP_EXPLICIT)

    skipped_action = _SKIPPED_ACTION.get(scheduling_tag)
    if skipped_action is not None and action in (skipped_action, Action.TEST):
        return Decision(Disposition.SKIP_EXPLICIT)

    return Decision(Disposition.ACT, action if action.mutates else None)


def evaluate_resource(resource: Resource, action: Action) -> Decision:
    """Apply the policy to a discovered resource."""
    return evaluate(resource.scheduling_tag, resource.autoscaled, action)
