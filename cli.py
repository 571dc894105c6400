"""
Compliance remediation CLI.

Usage
-----
remediate apply --tenant acme --finding f-1 --resource-id reports-bucket \\
    --resource-type storage-bucket --remediation-type enable-bucket-encryption --requested-by alice
remediate request-approval ... (same arguments as apply)
remediate approve --tenant acme --job-id <id> --approver bob
remediate rollback --tenant acme --job-id <id> --actor bob
remediate status --tenant acme --job-id <id>
remediate list-pending [--tenant acme]
remediate migrate [--dry-run]

Jobs are persisted in PostgreSQL when DB_URL is set; otherwise an in-process
store is used and jobs only live for the duration of one command.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import boto3

from contracts.services import ServicesFactory
from infra.aws_config import build_sdk_config
from infra.config import Settings, get_settings
from infra.logging_config import setup_logging
from services.remediation.actuator import RegistryActuator
from services.remediation.approval import ApprovalDispatcher
from services.remediation.audit import AuditSink, LoggingAuditSink, PostgresAuditSink
from services.remediation.errors import RemediationError, SafetyViolationError
from services.remediation.heuristics import business_hours_from_config, production_matcher_from_config
from services.remediation.models import RemediationRequest
from services.remediation.notifiers import LoggingNotifier, Notifier, SlackWebhookNotifier, SnsNotifier
from services.remediation.payload import merge_key_values, normalize_parameters
from services.remediation.safety import SafetyGate
from services.remediation.store import InMemoryJobStore, JobStore, PostgresJobStore
from services.remediation.workflow import RemediationWorkflow

logger = logging.getLogger(__name__)

EXIT_REMEDIATION_ERROR = 2
EXIT_SAFETY_VIOLATION = 3


def build_workflow(
    settings: Optional[Settings] = None,
    *,
    session: Optional[boto3.Session] = None,
    store: Optional[JobStore] = None,
    audit_sink: Optional[AuditSink] = None,
) -> RemediationWorkflow:
    """Wire the workflow from settings: boto3 clients, notifiers and persistence."""
    cfg = settings or get_settings()
    factory = ServicesFactory(session=session or boto3.Session(), sdk_config=build_sdk_config(cfg.aws))
    is_production = production_matcher_from_config(cfg.remediation)

    actuator = RegistryActuator(
        services_for_region=factory.for_region,
        default_region=cfg.aws.default_region,
        is_production=is_production,
    )
    safety_gate = SafetyGate(
        actuator,
        is_production=is_production,
        business_hours=business_hours_from_config(cfg.remediation),
        timeout_seconds=cfg.remediation.safety_check_timeout_seconds,
    )

    notifiers: list[Notifier] = [LoggingNotifier()]
    if cfg.approval.sns_topics:
        notifiers.append(SnsNotifier(factory.for_region(cfg.aws.default_region).sns, cfg.approval.sns_topics))
    if cfg.approval.slack_webhook_url:
        notifiers.append(SlackWebhookNotifier(cfg.approval.slack_webhook_url, channel=cfg.approval.slack_channel))
    dispatcher = ApprovalDispatcher(notifiers, is_production=is_production, dashboard_url=cfg.approval.dashboard_url)

    if store is None:
        if cfg.db.url:
            store = PostgresJobStore()
        else:
            logger.warning("DB_URL is not set; jobs are kept in memory for this process only")
            store = InMemoryJobStore()
    if audit_sink is None:
        audit_sink = PostgresAuditSink() if cfg.db.url else LoggingAuditSink()

    return RemediationWorkflow(
        actuator=actuator,
        store=store,
        safety_gate=safety_gate,
        approval_dispatcher=dispatcher,
        audit_sink=audit_sink,
        is_production=is_production,
        max_error_message_length=cfg.remediation.max_error_message_length,
    )


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))


def _request_from_args(args: argparse.Namespace) -> RemediationRequest:
    parameters = merge_key_values(normalize_parameters(args.parameters), args.param or [])
    return RemediationRequest(
        tenant_id=args.tenant,
        finding_id=args.finding,
        resource_id=args.resource_id,
        resource_type=args.resource_type,
        remediation_type=args.remediation_type,
        requested_by=args.requested_by,
        region=args.region or "",
        account_id=args.account_id or "",
        parameters=parameters,
        auto_approve=bool(args.auto_approve),
        dry_run=bool(args.dry_run),
        safety_override=bool(args.safety_override),
        correlation_id=args.correlation_id or "",
    )


def cmd_apply(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit(workflow.apply(_request_from_args(args)).to_dict())


def cmd_request_approval(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit(workflow.request_approval(_request_from_args(args)).to_dict())


def cmd_approve(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit(workflow.approve(args.tenant, args.job_id, args.approver).to_dict())


def cmd_rollback(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit(workflow.rollback(args.tenant, args.job_id, args.actor).to_dict())


def cmd_status(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit(workflow.status(args.tenant, args.job_id).to_dict())


def cmd_list_pending(args: argparse.Namespace, workflow: RemediationWorkflow) -> None:
    _emit([job.to_dict() for job in workflow.list_pending(args.tenant)])


def cmd_migrate(args: argparse.Namespace) -> None:
    from apps.backend.db_migrate import DEFAULT_MIGRATIONS_DIR, run_migrations

    migrations_dir = Path(args.migrations_dir) if args.migrations_dir else DEFAULT_MIGRATIONS_DIR
    versions = run_migrations(migrations_dir=migrations_dir, dry_run=bool(args.dry_run))
    _emit({"dry_run": bool(args.dry_run), "versions": versions})


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="remediate", description="Compliance remediation workflow")
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_request_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--tenant", required=True, help="Tenant id.")
        sp.add_argument("--finding", required=True, help="Finding id that triggered the remediation.")
        sp.add_argument("--resource-id", required=True, help="Identifier of the non-compliant resource.")
        sp.add_argument("--resource-type", required=True, help="Resource type, e.g. storage-bucket.")
        sp.add_argument("--remediation-type", required=True, help="Remediation, e.g. enable-bucket-encryption.")
        sp.add_argument("--requested-by", required=True, help="User requesting the remediation.")
        sp.add_argument("--region", default=None, help="Resource region (default: AWS_DEFAULT_REGION).")
        sp.add_argument("--account-id", default=None, help="Expected 12-digit account id.")
        sp.add_argument("--parameters", default=None, help="Handler parameters as a JSON object.")
        sp.add_argument("--param", action="append", help="Handler parameter as key=value (repeatable).")
        sp.add_argument("--auto-approve", action="store_true", help="Execute even if approval would be required.")
        sp.add_argument("--dry-run", action="store_true", help="Preview the change without applying it.")
        sp.add_argument("--safety-override", action="store_true", help="Proceed past critical safety failures.")
        sp.add_argument("--correlation-id", default=None, help="Correlation id for logs and audit.")

    def add_job_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--tenant", required=True, help="Tenant id.")
        sp.add_argument("--job-id", required=True, help="Remediation job id.")

    sp = sub.add_parser("apply", help="Run safety checks and apply, or park the job for approval.")
    add_request_args(sp)
    sp.set_defaults(func=cmd_apply)

    sp = sub.add_parser("request-approval", help="Run safety checks and always park the job for approval.")
    add_request_args(sp)
    sp.set_defaults(func=cmd_request_approval)

    sp = sub.add_parser("approve", help="Approve a pending job and execute it.")
    add_job_args(sp)
    sp.add_argument("--approver", required=True, help="Approving user.")
    sp.set_defaults(func=cmd_approve)

    sp = sub.add_parser("rollback", help="Roll back an applied job.")
    add_job_args(sp)
    sp.add_argument("--actor", required=True, help="User requesting the rollback.")
    sp.set_defaults(func=cmd_rollback)

    sp = sub.add_parser("status", help="Show a job.")
    add_job_args(sp)
    sp.set_defaults(func=cmd_status)

    sp = sub.add_parser("list-pending", help="List jobs awaiting approval.")
    sp.add_argument("--tenant", default=None, help="Restrict to one tenant.")
    sp.set_defaults(func=cmd_list_pending)

    sp = sub.add_parser("migrate", help="Apply database migrations (requires DB_URL).")
    sp.add_argument("--dry-run", action="store_true", help="List pending migrations without applying.")
    sp.add_argument("--migrations-dir", default=None, help="Migrations directory (default: ./migrations).")
    sp.set_defaults(func=cmd_migrate)

    return p


def main(argv: Optional[List[str]] = None, *, workflow: Optional[RemediationWorkflow] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    try:
        if args.cmd == "migrate":
            args.func(args)
        else:
            args.func(args, workflow or build_workflow())
    except SafetyViolationError as exc:
        payload = exc.to_dict()
        payload["failed_checks"] = [c.to_dict() for c in exc.failed_checks]
        print(json.dumps({"error": payload}, sort_keys=True), file=sys.stderr)
        return EXIT_SAFETY_VIOLATION
    except RemediationError as exc:
        print(json.dumps({"error": exc.to_dict()}, sort_keys=True), file=sys.stderr)
        return EXIT_REMEDIATION_ERROR
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
