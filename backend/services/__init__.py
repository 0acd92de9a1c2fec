"""
Background Services
"""
from .scheduler import SweepScheduler, SchedulerStats, get_scheduler

__all__ = ["SweepScheduler", "SchedulerStats", "get_scheduler"]
