"""Compliance remediation workflow.

This package contains:
- the job model and state graph (`models.py`)
- safety, approval and rollback gates (`safety.py`, `approval.py`, `rollback.py`)
- the handler registry and built-in handlers (`registry.py`, `handlers/`)
- the workflow state machine (`workflow.py`)
"""

from services.remediation.actuator import Actuator, RegistryActuator
from services.remediation.approval import ApprovalDispatcher, approval_requirements, requires_approval
from services.remediation.audit import (
    AuditSink,
    InMemoryAuditSink,
    LoggingAuditSink,
    NoopAuditSink,
    PostgresAuditSink,
    RemediationAuditEvent,
)
from services.remediation.base import HandlerContext, RemediationHandler
from services.remediation.errors import (
    ApprovalError,
    InvalidTransitionError,
    JobConflictError,
    JobNotFoundError,
    RemediationError,
    RollbackError,
    SafetyViolationError,
    ValidationError,
)
from services.remediation.models import (
    ActionOutcome,
    ActionStatus,
    ImpactEstimate,
    JobStatus,
    RemediationJob,
    RemediationRequest,
    RiskLevel,
    RollbackDescriptor,
    RollbackResult,
    SafetyCheck,
    SafetyCheckResult,
    Severity,
)
from services.remediation.registry import HandlerRegistry, list_handler_keys, register_handler
from services.remediation.rollback import RollbackCoordinator
from services.remediation.safety import SafetyGate
from services.remediation.store import InMemoryJobStore, JobStore, PostgresJobStore
from services.remediation.workflow import RemediationWorkflow

__all__ = [
    "Actuator",
    "RegistryActuator",
    "ApprovalDispatcher",
    "approval_requirements",
    "requires_approval",
    "AuditSink",
    "InMemoryAuditSink",
    "LoggingAuditSink",
    "NoopAuditSink",
    "PostgresAuditSink",
    "RemediationAuditEvent",
    "HandlerContext",
    "RemediationHandler",
    "ApprovalError",
    "InvalidTransitionError",
    "JobConflictError",
    "JobNotFoundError",
    "RemediationError",
    "RollbackError",
    "SafetyViolationError",
    "ValidationError",
    "ActionOutcome",
    "ActionStatus",
    "ImpactEstimate",
    "JobStatus",
    "RemediationJob",
    "RemediationRequest",
    "RiskLevel",
    "RollbackDescriptor",
    "RollbackResult",
    "SafetyCheck",
    "SafetyCheckResult",
    "Severity",
    "HandlerRegistry",
    "list_handler_keys",
    "register_handler",
    "RollbackCoordinator",
    "SafetyGate",
    "InMemoryJobStore",
    "JobStore",
    "PostgresJobStore",
    "RemediationWorkflow",
]
