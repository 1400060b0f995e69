"""Scheduling helpers."""

from .apsched_adapter import AUTO_REFRESH_JOB_ID, AutoRefreshScheduler

__all__ = ["AUTO_REFRESH_JOB_ID", "AutoRefreshScheduler"]
