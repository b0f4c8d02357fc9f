from rolelease.revocation.cascade import (
    CURRENT_DATABASE_SQL,
    GRANTED_SCHEMAS_SQL,
    ROLE_EXISTS_SQL,
    RevocationCascade,
    RevocationPlan,
)

__all__ = [
    "CURRENT_DATABASE_SQL",
    "GRANTED_SCHEMAS_SQL",
    "ROLE_EXISTS_SQL",
    "RevocationCascade",
    "RevocationPlan",
]
