"""Project version constants.

These constants are used in logs, in the botocore user agent and in persisted
job documents so that stored records can be traced back to the engine that
wrote them.
"""

ENGINE_NAME: str = "compliance-remediation"
ENGINE_VERSION: str = "0.1.0"

SCHEMA_VERSION: int = 1
