"""Shared utility functions used by services and blueprints.

parse_datetime:      ISO-8601 (date or datetime) → aware UTC datetime
as_utc / iso_or_none: normalise naive values read back from SQLite
db_commit_or_error:  one commit per mutation, rollback + JSON error on failure
"""
import logging
from datetime import date, datetime, time, timezone

from flask import jsonify

from riskledger.core.exceptions import ValidationError
from riskledger.models import db

logger = logging.getLogger(__name__)


def utcnow():
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    SQLite drops tzinfo on ``DateTime(timezone=True)`` columns, so every
    value read back from the store goes through here before comparison.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_or_none(value):
    """Serialise a datetime as ISO-8601 in UTC, or None."""
    if value is None:
        return None
    return as_utc(value).isoformat()


def parse_datetime(value, field="date"):
    """Parse an ISO-8601 string (date or datetime) to an aware UTC datetime.

    Returns None for empty input. Supports:
    - YYYY-MM-DD (midnight UTC)
    - YYYY-MM-DDTHH:MM:SS[.ffffff][+HH:MM | Z]
    - date / datetime objects

    Raises:
        ValidationError: the value is present but not a recognisable date.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValidationError(
            f"{field} is not a valid ISO-8601 date",
            details={field: "Invalid date format. Use YYYY-MM-DD or a full ISO timestamp."},
        ) from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate version number from a concurrent writer)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({
            "error": "Concurrent modification or constraint violation, retry the request",
            "code": "ERR_CONFLICT_DUPLICATE",
        }), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
