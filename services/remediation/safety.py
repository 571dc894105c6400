"""Pre-flight safety checks.

Three independent groups run concurrently: generic checks, resource-specific
checks and remediation-type checks. Any check that cannot complete reports
itself as failed with a severity reflecting the uncertainty.
"""

from __future__ import annotations

import json
import logging
import urllib.parse
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError  # type: ignore[import-untyped]

from services.remediation.actuator import Actuator
from services.remediation.errors import RemediationError
from services.remediation.handlers._common import describe_error
from services.remediation.heuristics import (
    DEFAULT_PRODUCTION_MATCHER,
    BusinessHoursWindow,
    Clock,
    ProductionPredicate,
    contains_any,
)
from services.remediation.inspector import ResourceInspector
from services.remediation.models import (
    RemediationRequest,
    SafetyCheck,
    SafetyCheckResult,
    Severity,
    utc_now,
)

logger = logging.getLogger(__name__)

_INSPECTION_ERRORS = (ClientError, BotoCoreError, RemediationError)

DESTRUCTIVE_KEYWORDS = ("delete", "revoke", "disable", "remove-policy")
IRREVERSIBLE_KEYWORDS = ("delete", "terminate", "destroy")
_CRITICALITY_TAG_KEYS = ("criticality", "environment")
_CRITICALITY_TAG_VALUES = ("critical", "prod")
_OPEN_CIDRS = ("0.0.0.0/0", "::/0")

RecentChangeHook = Callable[[RemediationRequest], bool]


def _no_recent_changes(request: RemediationRequest) -> bool:
    _ = request
    return False


def _ok(name: str, message: str) -> SafetyCheck:
    return SafetyCheck(name=name, passed=True, severity=Severity.LOW, message=message)


def _fail(name: str, severity: Severity, message: str, recommendation: str | None = None) -> SafetyCheck:
    return SafetyCheck(name=name, passed=False, severity=severity, message=message, recommendation=recommendation)


def _role_name(resource_id: str) -> str:
    text = str(resource_id or "")
    return text.rsplit("/", 1)[-1] if text.startswith("arn:") else text


def _trust_policy(role: dict[str, Any]) -> dict[str, Any]:
    raw = role.get("AssumeRolePolicyDocument") or {}
    if isinstance(raw, str):
        return dict(json.loads(urllib.parse.unquote(raw)))
    return dict(raw)


def _trusted_accounts(policy: dict[str, Any]) -> set[str]:
    accounts: set[str] = set()
    statements = policy.get("Statement") or []
    if isinstance(statements, dict):
        statements = [statements]
    for statement in statements:
        principal = (statement or {}).get("Principal") or {}
        aws = principal.get("AWS") if isinstance(principal, dict) else None
        for value in [aws] if isinstance(aws, str) else list(aws or []):
            parts = str(value).split(":")
            if len(parts) >= 5 and parts[4].isdigit():
                accounts.add(parts[4])
            elif str(value).isdigit():
                accounts.add(str(value))
    return accounts


class SafetyGate:
    """Runs generic, resource-specific and remediation-type checks for a request."""

    def __init__(
        self,
        actuator: Actuator,
        *,
        is_production: ProductionPredicate = DEFAULT_PRODUCTION_MATCHER,
        business_hours: BusinessHoursWindow | None = None,
        clock: Clock = utc_now,
        recent_changes: RecentChangeHook = _no_recent_changes,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._actuator = actuator
        self._is_production = is_production
        self._business_hours = business_hours or BusinessHoursWindow()
        self._clock = clock
        self._recent_changes = recent_changes
        self._timeout_seconds = timeout_seconds

    def run_safety_checks(self, request: RemediationRequest) -> SafetyCheckResult:
        """Fan the check groups out to worker threads and merge in a stable order.

        The wait is bounded by ``timeout_seconds``; groups still running at the
        deadline are abandoned and the whole run reports a CRITICAL timeout.
        """
        groups: list[tuple[str, Callable[[RemediationRequest], list[SafetyCheck]]]] = [
            ("generic", self.generic_checks),
            ("resource", self.resource_checks),
            ("remediation", self.remediation_checks),
        ]
        pool = ThreadPoolExecutor(max_workers=len(groups), thread_name_prefix="safety-check")
        try:
            futures = [pool.submit(func, request) for _, func in groups]
            _, not_done = wait(futures, timeout=self._timeout_seconds)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        if not_done:
            logger.error("Safety checks for %s timed out after %.1fs", request.resource_id, self._timeout_seconds)
            return SafetyCheckResult.aggregate(
                [_fail("Safety Check Timeout", Severity.CRITICAL, "Safety checks did not complete in time")]
            )

        checks: list[SafetyCheck] = []
        for (group, _), future in zip(groups, futures, strict=True):
            error = future.exception()
            if error is not None:
                logger.error("Safety check group %s raised: %s", group, error)
                checks.append(
                    _fail(
                        "Safety Check Error",
                        Severity.CRITICAL,
                        f"{group} checks failed to run: {type(error).__name__}",
                        "Investigate the error before retrying the remediation",
                    )
                )
            else:
                checks.extend(future.result())
        return SafetyCheckResult.aggregate(checks)

    # generic

    def generic_checks(self, request: RemediationRequest) -> list[SafetyCheck]:
        production = self._is_production(request.resource_id)
        checks = [
            _fail(
                "Production Environment Check",
                Severity.HIGH,
                "Resource appears to be in a production environment",
                "Schedule the change in a maintenance window and obtain approval",
            )
            if production
            else _ok("Production Environment Check", "Resource does not look like production"),
            self._permissions_check(request),
        ]
        if production and self._business_hours.contains(self._clock()):
            checks.append(
                _fail(
                    "Business Hours Check",
                    Severity.MEDIUM,
                    "Production change requested during business hours",
                    "Consider scheduling outside business hours",
                )
            )
        else:
            checks.append(_ok("Business Hours Check", "No business-hours conflict"))
        if self._recent_changes(request):
            checks.append(
                _fail(
                    "Recent Changes Check",
                    Severity.MEDIUM,
                    "Resource was changed recently",
                    "Review the recent change before remediating",
                )
            )
        else:
            checks.append(_ok("Recent Changes Check", "No recent changes recorded"))
        return checks

    def _permissions_check(self, request: RemediationRequest) -> SafetyCheck:
        name = "Account Permissions Check"
        try:
            identity = self._actuator.inspector(request.region).caller_identity()
        except _INSPECTION_ERRORS as exc:
            return _fail(name, Severity.HIGH, f"Unable to verify account permissions: {describe_error(exc)}")
        account = str(identity.get("account") or "")
        if not account:
            return _fail(name, Severity.CRITICAL, "Caller identity has no account", "Check the credentials in use")
        if request.account_id and account != request.account_id:
            return _fail(
                name,
                Severity.CRITICAL,
                f"Credentials belong to account {account}, target is {request.account_id}",
                "Assume a role in the target account",
            )
        return _ok(name, "Caller identity verified")

    # resource-specific

    def resource_checks(self, request: RemediationRequest) -> list[SafetyCheck]:
        inspector = self._actuator.inspector(request.region)
        resource_type = request.resource_type
        if resource_type == "storage-bucket":
            return self._bucket_checks(inspector, request)
        if resource_type == "identity-role":
            return self._role_checks(inspector, request)
        if resource_type in {"identity-user", "identity-policy"}:
            return [_ok("Identity Change Review", "Identity changes are reviewed through approval")]
        if resource_type == "network-ingress-group":
            return self._security_group_checks(inspector, request)
        if resource_type in {"database-instance", "database-cluster"}:
            return self._database_checks(inspector, request)
        if self._actuator.known_resource_type(resource_type):
            return [_ok("Resource Type Check", f"No resource-specific checks for {resource_type}")]
        return [
            _fail(
                "Unknown Resource Type",
                Severity.HIGH,
                f"Resource type {resource_type!r} is not recognized",
                "Review the remediation manually",
            )
        ]

    def _bucket_checks(self, inspector: ResourceInspector, request: RemediationRequest) -> list[SafetyCheck]:
        bucket = request.resource_id
        try:
            inspector.bucket_location(bucket)
        except _INSPECTION_ERRORS as exc:
            return [
                _fail(
                    "Bucket Accessibility",
                    Severity.CRITICAL,
                    f"Bucket {bucket} is not accessible: {describe_error(exc)}",
                    "Verify the bucket exists and the caller can read it",
                )
            ]
        checks = [_ok("Bucket Accessibility", f"Bucket {bucket} is accessible")]

        try:
            tags = inspector.bucket_tags(bucket)
        except _INSPECTION_ERRORS as exc:
            checks.append(_fail("Criticality Tag Check", Severity.MEDIUM, f"Unable to read tags: {describe_error(exc)}"))
        else:
            critical = any(
                key.lower() in _CRITICALITY_TAG_KEYS and contains_any(value, _CRITICALITY_TAG_VALUES)
                for key, value in tags.items()
            )
            if critical:
                checks.append(
                    _fail(
                        "Criticality Tag Check",
                        Severity.HIGH,
                        "Bucket is tagged as critical or production",
                        "Coordinate with the bucket owner",
                    )
                )
            else:
                checks.append(_ok("Criticality Tag Check", "No criticality tags"))

        if request.remediation_type == "block-public-access":
            checks.append(
                _fail(
                    "Public Access Advisory",
                    Severity.LOW,
                    "Blocking public access may break public consumers of this bucket",
                    "Verify no legitimate public access requirements",
                )
            )
        return checks

    def _role_checks(self, inspector: ResourceInspector, request: RemediationRequest) -> list[SafetyCheck]:
        role_name = _role_name(request.resource_id)
        try:
            role = inspector.role(role_name)
        except _INSPECTION_ERRORS as exc:
            return [
                _fail(
                    "Role Accessibility",
                    Severity.CRITICAL,
                    f"Role {role_name} is not accessible: {describe_error(exc)}",
                    "Verify the role exists",
                )
            ]
        checks = [_ok("Role Accessibility", f"Role {role_name} is accessible")]

        try:
            trust = _trust_policy(role)
        except ValueError:
            trust = {}
        trust_text = json.dumps(trust)
        if "amazonaws.com" in trust_text:
            checks.append(
                SafetyCheck(
                    name="Service Role Check",
                    passed=True,
                    severity=Severity.MEDIUM,
                    message="Role is assumed by an AWS service",
                    recommendation="Confirm the service keeps the permissions it needs",
                )
            )

        foreign = {a for a in _trusted_accounts(trust) if request.account_id and a != request.account_id}
        if foreign:
            checks.append(
                _fail(
                    "Cross-Account Trust Check",
                    Severity.MEDIUM,
                    f"Role trusts other accounts: {', '.join(sorted(foreign))}",
                    "Notify the owners of the trusted accounts",
                )
            )

        try:
            policies = inspector.attached_role_policies(role_name)
        except _INSPECTION_ERRORS as exc:
            checks.append(
                _fail("Admin Policy Check", Severity.MEDIUM, f"Unable to list attached policies: {describe_error(exc)}")
            )
        else:
            admin = [
                str(p.get("PolicyName") or "")
                for p in policies
                if "admin" in str(p.get("PolicyName") or "").lower()
            ]
            if admin:
                checks.append(
                    _fail(
                        "Admin Policy Check",
                        Severity.HIGH,
                        f"Role has administrative policies attached: {', '.join(admin)}",
                        "Review administrative access before changing this role",
                    )
                )
            else:
                checks.append(_ok("Admin Policy Check", "No administrative policies attached"))
        return checks

    def _security_group_checks(self, inspector: ResourceInspector, request: RemediationRequest) -> list[SafetyCheck]:
        group_id = request.resource_id
        try:
            group = inspector.security_group(group_id)
        except _INSPECTION_ERRORS as exc:
            return [
                _fail(
                    "Security Group Existence",
                    Severity.CRITICAL,
                    f"Security group {group_id} not found: {describe_error(exc)}",
                    "Verify the security group id",
                )
            ]
        checks = [_ok("Security Group Existence", f"Security group {group_id} exists")]

        try:
            running = inspector.running_instance_count(group_id)
        except _INSPECTION_ERRORS as exc:
            checks.append(
                _fail("Attached Instances Check", Severity.HIGH, f"Unable to count instances: {describe_error(exc)}")
            )
        else:
            if running > 0:
                checks.append(
                    _fail(
                        "Attached Instances Check",
                        Severity.HIGH,
                        f"{running} running instance(s) use this security group",
                        "Verify connectivity requirements of attached instances",
                    )
                )
            else:
                checks.append(_ok("Attached Instances Check", "No running instances attached"))

        open_rule = any(
            r.get("CidrIp") in _OPEN_CIDRS or r.get("CidrIpv6") in _OPEN_CIDRS
            for permission in group.get("IpPermissions") or []
            for r in [*(permission.get("IpRanges") or []), *(permission.get("Ipv6Ranges") or [])]
        )
        restricting = contains_any(request.remediation_type, ("restrict", "remove"))
        if open_rule and not restricting:
            checks.append(
                _fail(
                    "Overly Permissive Rule Check",
                    Severity.MEDIUM,
                    "Security group allows ingress from anywhere",
                    "Restrict the open rule as part of this change",
                )
            )
        else:
            checks.append(_ok("Overly Permissive Rule Check", "No unaddressed world-open ingress"))
        return checks

    def _database_checks(self, inspector: ResourceInspector, request: RemediationRequest) -> list[SafetyCheck]:
        identifier = request.resource_id
        try:
            database = inspector.database(identifier, cluster=request.resource_type == "database-cluster")
        except _INSPECTION_ERRORS as exc:
            return [
                _fail(
                    "Database Existence",
                    Severity.CRITICAL,
                    f"Database {identifier} not found: {describe_error(exc)}",
                    "Verify the database identifier",
                )
            ]
        checks = [_ok("Database Existence", f"Database {identifier} exists")]
        if not database.get("MultiAZ", False):
            checks.append(
                _fail(
                    "Multi-AZ Check",
                    Severity.LOW,
                    "Database is single-AZ; changes may cause an outage",
                    "Schedule during a maintenance window",
                )
            )
        retention = int(database.get("BackupRetentionPeriod") or 0)
        if retention == 0 and request.remediation_type != "enable-backup-retention":
            checks.append(
                _fail(
                    "Backup Retention Check",
                    Severity.MEDIUM,
                    "Automated backups are disabled",
                    "Take a manual snapshot before remediating",
                )
            )
        return checks

    # remediation-type

    def remediation_checks(self, request: RemediationRequest) -> list[SafetyCheck]:
        remediation = request.remediation_type
        checks: list[SafetyCheck] = []
        if contains_any(remediation, DESTRUCTIVE_KEYWORDS):
            checks.append(
                _fail(
                    "Destructive Operation Check",
                    Severity.HIGH,
                    f"Remediation {remediation!r} is destructive",
                    "Take a backup before proceeding",
                )
            )
        if contains_any(remediation, IRREVERSIBLE_KEYWORDS):
            checks.append(
                _fail(
                    "Irreversible Operation Check",
                    Severity.CRITICAL,
                    f"Remediation {remediation!r} cannot be undone",
                    "Requires an explicit safety override",
                )
            )
        if not checks:
            checks.append(_ok("Remediation Type Check", f"Remediation {remediation!r} is non-destructive"))
        return checks
