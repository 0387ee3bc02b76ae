"""Scheduling utilities for recurring jobs."""

from .config import JobDefinition, ScheduleConfig, load_job_definitions
from .runner import JobScheduler, resolve_task

__all__ = ["JobDefinition", "JobScheduler", "ScheduleConfig", "load_job_definitions", "resolve_task"]
