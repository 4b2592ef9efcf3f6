"""Backup and restore pipelines and their background worker.

Usage:
    from bbf_backup.pipeline import BackupRequest, PipelineWorker, run_backup
"""

from bbf_backup.pipeline.backup import run_backup
from bbf_backup.pipeline.models import (
    BackupRequest,
    PipelineResult,
    RestoreRequest,
    Stage,
)
from bbf_backup.pipeline.restore import check_destination, run_restore
from bbf_backup.pipeline.worker import PipelineWorker, ProgressBatcher

__all__ = [
    "BackupRequest",
    "PipelineResult",
    "PipelineWorker",
    "ProgressBatcher",
    "RestoreRequest",
    "Stage",
    "check_destination",
    "run_backup",
    "run_restore",
]
