"""
Instance Scheduler - scheduled start/stop of EC2 and RDS instances.

Runs across every member account of an AWS organisation, honouring the
instance-scheduling tag and leaving Auto Scaling group instances alone.
"""

__version__ = "1.0.0"

from instance_scheduler.core.exceptions import SchedulerError

__all__ = ["SchedulerError"]
