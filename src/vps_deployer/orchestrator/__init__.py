"""Deployment orchestration: step tracking, progress stream and lifecycle operations."""

from .models import (
    CreateProjectInput,
    DeleteResult,
    DeploymentStep,
    DeployResult,
    ProgressSnapshot,
    StepStatus,
)
from .orchestrator import (
    CREATE_STEPS,
    REDEPLOY_STEP_IDS,
    REDEPLOY_STEPS,
    DeploymentOrchestrator,
    resume_point,
)
from .progress import CompleteEvent, ErrorEvent, ProgressChannel, ProgressEvent, SyncEvent, to_json_line
from .step_logger import OUTPUT_LIMIT, StepLogger

__all__ = [
    "CreateProjectInput",
    "DeleteResult",
    "DeploymentStep",
    "DeployResult",
    "ProgressSnapshot",
    "StepStatus",
    "CREATE_STEPS",
    "REDEPLOY_STEP_IDS",
    "REDEPLOY_STEPS",
    "DeploymentOrchestrator",
    "resume_point",
    "CompleteEvent",
    "ErrorEvent",
    "ProgressChannel",
    "ProgressEvent",
    "SyncEvent",
    "to_json_line",
    "OUTPUT_LIMIT",
    "StepLogger",
]
