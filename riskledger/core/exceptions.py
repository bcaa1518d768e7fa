"""
Ledger-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere. Services never build HTTP
responses themselves.

Usage:
    from riskledger.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Risk", resource_id=risk_id)
    raise ValidationError("Rationale required", details={"status_change_rationale": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Covers missing owners, missing steps, and point-in-time history queries
    that precede the first version.

    Args:
        resource: Human-readable model/entity name (e.g. "Risk", "Mitigation step").
        resource_id: The key that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Raised strictly before any write, so a rejected mutation leaves no
    version, no audit entry and no partial entity state behind.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown. Keys are field names (or rationale
                 keys); values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
