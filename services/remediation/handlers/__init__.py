"""Built-in remediation handlers.

Import modules here so registration works in static contexts.
"""

from services.remediation.handlers import audit_trail as _audit_trail
from services.remediation.handlers import database as _database
from services.remediation.handlers import encryption_key as _encryption_key
from services.remediation.handlers import identity_role as _identity_role
from services.remediation.handlers import network_ingress_group as _network_ingress_group
from services.remediation.handlers import serverless_function as _serverless_function
from services.remediation.handlers import storage_bucket as _storage_bucket

__all__ = [
    "_audit_trail",
    "_database",
    "_encryption_key",
    "_identity_role",
    "_network_ingress_group",
    "_serverless_function",
    "_storage_bucket",
]
