"""
Lead lifecycle rules.

Everything here is a pure function of a lead (any object exposing the Lead
columns) and the current time. The functions return the column changes to
apply; writing them is the job of src.leads.service, which does it through
version-guarded conditional updates.

Invariants:
- call_attempts grows by exactly one per logged call and never exceeds 8
- ISCRITTO and PERSO are terminal; only a claim brings a PERSO lead back
- enrolled implies ISCRITTO
- an open lead whose last call is more than 15 days old is PERSO, whatever
  the stored status says (evaluate_expiry is the single source for this)
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import uuid

from src.leads.models import LeadStatus, CallOutcome
from src.leads.exceptions import InvalidStateError, ClaimConflictError

MAX_CALL_ATTEMPTS = 8
INACTIVITY_DAYS = 15

LOST_REASON_NEGATIVE = "Esito negativo"
LOST_REASON_MAX_ATTEMPTS = "8 tentativi raggiunti"
LOST_REASON_INACTIVITY = "Inattività 15 giorni"
LOST_REASON_MANUAL = "Chiusura manuale"

TERMINAL_STATUSES = (LeadStatus.ISCRITTO, LeadStatus.PERSO)
OPEN_STATUSES = (LeadStatus.NUOVO, LeadStatus.CONTATTATO, LeadStatus.IN_TRATTATIVA)
RETRY_OUTCOMES = (CallOutcome.RICHIAMARE, CallOutcome.NON_RISPONDE)

# Transitions a user may request directly. ISCRITTO is reached through
# enrollment, and PERSO leaves only through a claim.
VALID_STATUS_TRANSITIONS = {
    LeadStatus.NUOVO: [LeadStatus.CONTATTATO, LeadStatus.IN_TRATTATIVA, LeadStatus.PERSO],
    LeadStatus.CONTATTATO: [LeadStatus.IN_TRATTATIVA, LeadStatus.PERSO],
    LeadStatus.IN_TRATTATIVA: [LeadStatus.CONTATTATO, LeadStatus.PERSO],
    LeadStatus.ISCRITTO: [],
    LeadStatus.PERSO: [],
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything is stored in UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def expiry_cutoff(now: Optional[datetime] = None) -> datetime:
    """Leads whose last attempt is older than this are expired."""
    return as_utc(now or utcnow()) - timedelta(days=INACTIVITY_DAYS)


def is_expired(lead, now: Optional[datetime] = None) -> bool:
    if lead.enrolled or lead.status in TERMINAL_STATUSES:
        return False
    last_attempt = as_utc(lead.last_attempt_at)
    if last_attempt is None:
        return False
    return last_attempt < expiry_cutoff(now)


def evaluate_expiry(lead, now: Optional[datetime] = None) -> LeadStatus:
    """Effective status of a lead. The 15-day rule wins over the stored status."""
    if is_expired(lead, now):
        return LeadStatus.PERSO
    return LeadStatus(lead.status)


def is_terminal(lead, now: Optional[datetime] = None) -> bool:
    return bool(lead.enrolled) or evaluate_expiry(lead, now) in TERMINAL_STATUSES


def effective_overrides(lead, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Fields a reader must see instead of the stored ones.

    An expired lead is shown as lost at the moment the inactivity window
    closed, so repeated reads agree with each other.
    """
    if not is_expired(lead, now):
        return {}
    return {
        "status": LeadStatus.PERSO,
        "lost_reason": LOST_REASON_INACTIVITY,
        "lost_at": as_utc(lead.last_attempt_at) + timedelta(days=INACTIVITY_DAYS),
    }


def expiry_changes(lead, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Changes that persist an expiry. Empty when the lead is not expired."""
    now = as_utc(now or utcnow())
    if not is_expired(lead, now):
        return {}
    return {
        "status": LeadStatus.PERSO,
        "lost_reason": LOST_REASON_INACTIVITY,
        "lost_at": now,
        "updated_at": now,
    }


@dataclass
class CallTransition:
    attempt: int
    previous_status: LeadStatus
    status: LeadStatus
    outcome: CallOutcome
    became_perso: bool
    changes: Dict[str, Any] = field(default_factory=dict)


def apply_call_outcome(
    lead,
    outcome: CallOutcome,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CallTransition:
    """Compute the effect of logging one call on a lead.

    Raises InvalidStateError when the lead is terminal (stored or expired)
    or has no attempts left.
    """
    now = as_utc(now or utcnow())
    outcome = CallOutcome(outcome)
    current = evaluate_expiry(lead, now)

    if lead.enrolled or current in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Lead {lead.id} is {current.value}: no further calls can be logged"
        )
    if lead.call_attempts >= MAX_CALL_ATTEMPTS:
        raise InvalidStateError(
            f"Lead {lead.id} already has {MAX_CALL_ATTEMPTS} call attempts"
        )

    attempt = lead.call_attempts + 1
    lost_reason = None

    if outcome == CallOutcome.NEGATIVO:
        next_status = LeadStatus.PERSO
        lost_reason = LOST_REASON_NEGATIVE
    elif outcome in RETRY_OUTCOMES and attempt >= MAX_CALL_ATTEMPTS:
        next_status = LeadStatus.PERSO
        lost_reason = LOST_REASON_MAX_ATTEMPTS
    elif current == LeadStatus.NUOVO:
        next_status = LeadStatus.CONTATTATO
    else:
        # Never regress IN_TRATTATIVA back to CONTATTATO
        next_status = current

    first_attempt_at = as_utc(lead.first_attempt_at) or now
    changes: Dict[str, Any] = {
        "status": next_status,
        "call_attempts": attempt,
        "call_outcome": outcome,
        "outcome_notes": notes,
        "first_attempt_at": first_attempt_at,
        "last_attempt_at": now,
        "updated_at": now,
    }
    if not lead.contacted:
        changes["contacted"] = True
        changes["contacted_at"] = first_attempt_at
    if lost_reason:
        changes["lost_reason"] = lost_reason
        changes["lost_at"] = now

    return CallTransition(
        attempt=attempt,
        previous_status=current,
        status=next_status,
        outcome=outcome,
        became_perso=next_status == LeadStatus.PERSO,
        changes=changes,
    )


def status_change(
    lead,
    new_status: LeadStatus,
    lost_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Changes for a status requested by a user through the transition table."""
    now = as_utc(now or utcnow())
    new_status = LeadStatus(new_status)
    current = evaluate_expiry(lead, now)

    if lead.enrolled:
        raise InvalidStateError(f"Lead {lead.id} is enrolled")
    if new_status == LeadStatus.ISCRITTO:
        raise InvalidStateError("Use enrollment to mark a lead ISCRITTO")
    if new_status not in VALID_STATUS_TRANSITIONS[current]:
        raise InvalidStateError(
            f"Lead {lead.id} cannot go from {current.value} to {new_status.value}"
        )

    changes: Dict[str, Any] = {"status": new_status, "updated_at": now}
    if new_status == LeadStatus.PERSO:
        changes["lost_reason"] = lost_reason or LOST_REASON_MANUAL
        changes["lost_at"] = now
    return changes


def enrollment(lead, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = as_utc(now or utcnow())
    if is_terminal(lead, now):
        raise InvalidStateError(
            f"Lead {lead.id} is {evaluate_expiry(lead, now).value}: it cannot be enrolled"
        )
    return {
        "status": LeadStatus.ISCRITTO,
        "enrolled": True,
        "enrolled_at": now,
        "updated_at": now,
    }


def claim(lead, claiming_user_id: uuid.UUID, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Changes that hand a PERSO lead to a new owner for a fresh attempt cycle."""
    now = as_utc(now or utcnow())
    if lead.enrolled or evaluate_expiry(lead, now) != LeadStatus.PERSO:
        raise ClaimConflictError(f"Lead {lead.id} is not PERSO and cannot be claimed")
    return {
        "assigned_to_id": claiming_user_id,
        "status": LeadStatus.CONTATTATO,
        "call_attempts": 0,
        "first_attempt_at": None,
        "last_attempt_at": None,
        "call_outcome": None,
        "outcome_notes": None,
        "lost_reason": None,
        "lost_at": None,
        "updated_at": now,
    }
