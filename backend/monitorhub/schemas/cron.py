"""Sweep trigger schemas."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class SweepCompleted(BaseModel):
    success: bool = True
    processed: int
    failed: int
    duration_ms: int


class SweepSkipped(BaseModel):
    message: str
    skipped: bool = True


class LastRun(BaseModel):
    outcome: str  # completed, skipped, rejected, failed
    processed: int
    failed: int
    duration_ms: int
    error: Optional[str] = None
    finished_at: datetime


class SchedulerStatus(BaseModel):
    """Scheduler state for operators."""
    timer_running: bool
    state: str  # idle, lock_acquiring, running, releasing
    check_interval_seconds: int
    batch_size: int
    lock_configured: bool
    last_run: Optional[LastRun] = None
