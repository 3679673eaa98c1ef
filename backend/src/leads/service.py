import logging
import math
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import and_, func, not_, or_, update
from sqlmodel import Session, select
from datetime import datetime, timezone
from enum import Enum
import uuid

from src.database import atomic
from src.leads import lifecycle
from src.leads.exceptions import LeadError, ClaimConflictError, ConcurrentUpdateError
from src.leads.history_models import LeadHistory, LeadAction
from src.leads.models import Lead, LeadStatus, CallOutcome
from src.leads.schemas import LeadCreate, LeadUpdate, LeadRead, StatusChange
from src.notifications.models import NotificationType
from src.notifications import service as notifications
from src.organizations.models import OrgRole, MANAGER_ROLES
from src.users.models import User

logger = logging.getLogger(__name__)

# -- Conditional writes --

def conditional_update(session: Session, lead_id: uuid.UUID, expected_version: int, values: Dict[str, Any]) -> bool:
    """UPDATE lead SET ... WHERE id = :id AND version = :expected_version.

    Returns False when no row matched, i.e. the lead changed or vanished
    since it was read. Does not commit.
    """
    result = session.execute(
        update(Lead)
        .where(Lead.id == lead_id)
        .where(Lead.version == expected_version)
        .values(**values, version=Lead.version + 1)
    )
    return result.rowcount == 1

def increment_attempt(session: Session, lead_id: uuid.UUID, expected_version: int, values: Dict[str, Any]) -> bool:
    """Write a logged call; the attempt counter is incremented in SQL."""
    values = {key: value for key, value in values.items() if key != "call_attempts"}
    values["call_attempts"] = Lead.call_attempts + 1
    return conditional_update(session, lead_id, expected_version, values)

# -- History --

def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value

def _snapshot(values: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _jsonable(value) for key, value in values.items() if key != "updated_at"}

def record_history(
    session: Session,
    lead_id: uuid.UUID,
    action: LeadAction,
    performed_by_id: Optional[uuid.UUID],
    description: str,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None
) -> LeadHistory:
    """Append a history entry to the session. The caller commits."""
    history = LeadHistory(
        lead_id=lead_id,
        action=action,
        performed_by_id=performed_by_id,
        description=description,
        old_value=old_value,
        new_value=new_value
    )
    session.add(history)
    return history

def get_lead_history(session: Session, lead_id: uuid.UUID) -> List[LeadHistory]:
    return session.exec(
        select(LeadHistory)
        .where(LeadHistory.lead_id == lead_id)
        .order_by(LeadHistory.created_at.desc())
    ).all()

# -- Reads --

def effective_status_clause(status: LeadStatus, now: Optional[datetime] = None):
    """SQL form of lifecycle.evaluate_expiry for list filters."""
    cutoff = lifecycle.expiry_cutoff(now)
    expired = and_(
        Lead.status.in_(lifecycle.OPEN_STATUSES),
        Lead.enrolled == False,  # noqa: E712
        Lead.last_attempt_at.is_not(None),
        Lead.last_attempt_at < cutoff,
    )
    if status == LeadStatus.PERSO:
        return or_(Lead.status == LeadStatus.PERSO, expired)
    if status in lifecycle.OPEN_STATUSES:
        return and_(Lead.status == status, not_(expired))
    return Lead.status == status

def present_lead(lead: Lead, now: Optional[datetime] = None) -> LeadRead:
    """Read model of a lead with the effective status applied."""
    read = LeadRead.model_validate(lead, from_attributes=True)
    overrides = lifecycle.effective_overrides(lead, now)
    if overrides:
        read = read.model_copy(update=overrides)
    return read

def get_lead(session: Session, lead_id: uuid.UUID, org_id: uuid.UUID) -> Optional[Lead]:
    return session.exec(
        select(Lead)
        .where(Lead.id == lead_id)
        .where(Lead.organization_id == org_id)
    ).first()

def _search_clause(search: str):
    pattern = f"%{search.strip()}%"
    return or_(
        Lead.name.ilike(pattern),
        Lead.email.ilike(pattern),
        Lead.phone.ilike(pattern),
    )

def get_leads(
    session: Session,
    org_id: uuid.UUID,
    skip: int = 0,
    limit: int = 100,
    status: Optional[LeadStatus] = None,
    assigned_to_id: Optional[uuid.UUID] = None,
    course_id: Optional[uuid.UUID] = None,
    is_target: Optional[bool] = None,
    search: Optional[str] = None,
    now: Optional[datetime] = None
) -> List[Lead]:
    query = select(Lead).where(Lead.organization_id == org_id)

    if status:
        query = query.where(effective_status_clause(status, now))
    if assigned_to_id:
        query = query.where(Lead.assigned_to_id == assigned_to_id)
    if course_id:
        query = query.where(Lead.course_id == course_id)
    if is_target is not None:
        query = query.where(Lead.is_target == is_target)
    if search and search.strip():
        query = query.where(_search_clause(search))

    query = query.order_by(Lead.created_at.desc())
    return session.exec(query.offset(skip).limit(limit)).all()

_NEVER = datetime.min.replace(tzinfo=timezone.utc)

def _loss_order(lead: LeadRead):
    return lifecycle.as_utc(lead.lost_at) or _NEVER, lifecycle.as_utc(lead.created_at)

def get_perso_pool(
    session: Session,
    org_id: uuid.UUID,
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
    course_id: Optional[uuid.UUID] = None,
    assigned_to_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None
) -> dict:
    """PERSO leads any commercial may claim, most recently lost first."""
    conditions = [Lead.organization_id == org_id, effective_status_clause(LeadStatus.PERSO, now)]
    if search and search.strip():
        conditions.append(_search_clause(search))
    if course_id:
        conditions.append(Lead.course_id == course_id)
    if assigned_to_id:
        conditions.append(Lead.assigned_to_id == assigned_to_id)

    # Lazily expired leads have no stored lost_at, so order on the effective one
    pool = sorted(
        (present_lead(lead, now) for lead in session.exec(select(Lead).where(*conditions)).all()),
        key=_loss_order,
        reverse=True
    )
    total_count = len(pool)
    start = (page - 1) * page_size

    # Previous owners holding PERSO leads, for the filter dropdown; first page only
    commercials = []
    if page == 1:
        rows = session.exec(
            select(Lead.assigned_to_id, User.name, func.count(Lead.id))
            .join(User, User.id == Lead.assigned_to_id)
            .where(Lead.organization_id == org_id)
            .where(effective_status_clause(LeadStatus.PERSO, now))
            .group_by(Lead.assigned_to_id, User.name)
        ).all()
        commercials = sorted(
            ({"id": user_id, "name": name, "count": count} for user_id, name, count in rows),
            key=lambda row: row["count"],
            reverse=True
        )

    total_pages = math.ceil(total_count / page_size) if page_size else 0
    return {
        "leads": pool[start:start + page_size],
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total_count": total_count,
            "total_pages": total_pages,
            "has_more": page < total_pages,
        },
        "commercials": commercials,
    }

# -- Writes --

def _notify_assignee(session: Session, lead: Lead, assignee_id: uuid.UUID) -> None:
    notifications.notify(
        session,
        lead.organization_id,
        assignee_id,
        NotificationType.LEAD_ASSIGNED,
        "Lead assegnato",
        f"Ti è stato assegnato il lead: {lead.name}",
        lead_id=lead.id
    )

def create_lead(session: Session, lead_create: LeadCreate, org_id: uuid.UUID, user_id: uuid.UUID) -> Lead:
    db_lead = Lead(**lead_create.model_dump(), organization_id=org_id, created_by_id=user_id)

    with atomic(session):
        session.add(db_lead)
        session.flush()

        # Only store explicitly set fields
        provided_data = _snapshot(lead_create.model_dump(exclude_unset=True))
        record_history(
            session,
            db_lead.id,
            LeadAction.CREATED,
            user_id,
            f"Lead '{db_lead.name}' was created",
            new_value=provided_data
        )
        if db_lead.assigned_to_id and db_lead.assigned_to_id != user_id:
            _notify_assignee(session, db_lead, db_lead.assigned_to_id)

    session.refresh(db_lead)
    return db_lead

def _write(
    session: Session,
    db_lead: Lead,
    changes: Dict[str, Any],
    action: LeadAction,
    user_id: Optional[uuid.UUID],
    description: str,
    old_value: Optional[dict] = None,
    new_value: Optional[dict] = None,
    conflict: type = ConcurrentUpdateError
) -> None:
    """Conditionally apply changes and append history, in one transaction."""
    lead_id, expected_version = db_lead.id, db_lead.version
    if not conditional_update(session, lead_id, expected_version, changes):
        logger.warning("Lead %s changed since version %s; %s rejected", lead_id, expected_version, action.value)
        raise conflict(f"Lead {lead_id} was modified by someone else, reload and retry")
    record_history(session, lead_id, action, user_id, description, old_value, new_value)

def update_lead(session: Session, db_lead: Lead, lead_update: LeadUpdate, user_id: uuid.UUID) -> Lead:
    update_data = lead_update.model_dump(exclude_unset=True)
    changed_old = {}  # Only store changed fields
    changed_new = {}
    for key, value in update_data.items():
        old_value = getattr(db_lead, key)
        if old_value != value:
            changed_old[key] = old_value
            changed_new[key] = value

    if not changed_new:
        return db_lead

    action = LeadAction.ASSIGNED if "assigned_to_id" in changed_new else LeadAction.UPDATED
    description = "Lead updated: " + ", ".join(
        f"{key}: {_jsonable(changed_old[key])} → {_jsonable(changed_new[key])}" for key in changed_new
    )

    with atomic(session):
        _write(
            session, db_lead, {**changed_new, "updated_at": lifecycle.utcnow()}, action, user_id,
            description, _snapshot(changed_old), _snapshot(changed_new)
        )
        new_assignee = changed_new.get("assigned_to_id")
        if new_assignee and new_assignee != user_id:
            _notify_assignee(session, db_lead, new_assignee)

    session.refresh(db_lead)
    return db_lead

def log_call_outcome(
    session: Session,
    db_lead: Lead,
    outcome: CallOutcome,
    notes: Optional[str],
    user_id: uuid.UUID,
    now: Optional[datetime] = None
) -> Tuple[Lead, lifecycle.CallTransition]:
    """Record one call on a lead. Raises InvalidStateError or ConcurrentUpdateError."""
    transition = lifecycle.apply_call_outcome(db_lead, outcome, notes, now)
    lead_id, expected_version = db_lead.id, db_lead.version

    with atomic(session):
        if not increment_attempt(session, lead_id, expected_version, transition.changes):
            logger.warning("Concurrent call logging on lead %s (version %s)", lead_id, expected_version)
            raise ConcurrentUpdateError(f"Lead {lead_id} was modified by someone else, reload and retry")

        record_history(
            session,
            lead_id,
            LeadAction.CALL_LOGGED,
            user_id,
            f"Chiamata #{transition.attempt}: {transition.outcome.value}",
            old_value={"status": transition.previous_status.value, "call_attempts": transition.attempt - 1},
            new_value={
                "status": transition.status.value,
                "call_attempts": transition.attempt,
                "call_outcome": transition.outcome.value,
                "notes": notes,
            }
        )

    if transition.became_perso:
        logger.info("Lead %s became PERSO after call #%s (%s)", lead_id, transition.attempt, transition.outcome.value)

    session.refresh(db_lead)
    return db_lead, transition

def change_status(session: Session, db_lead: Lead, status_change: StatusChange, user_id: uuid.UUID) -> Lead:
    previous = lifecycle.evaluate_expiry(db_lead)
    changes = lifecycle.status_change(db_lead, status_change.status, status_change.lost_reason)

    with atomic(session):
        _write(
            session, db_lead, changes, LeadAction.STATUS_CHANGED, user_id,
            f"Status: {previous.value} → {status_change.status.value}",
            {"status": previous.value},
            _snapshot(changes)
        )

    session.refresh(db_lead)
    return db_lead

def enroll_lead(session: Session, db_lead: Lead, user_id: uuid.UUID, course_name: Optional[str] = None) -> Lead:
    changes = lifecycle.enrollment(db_lead)
    previous = lifecycle.evaluate_expiry(db_lead)
    message = f"{db_lead.name} si è iscritto al corso {course_name or ''}".strip()

    with atomic(session):
        _write(
            session, db_lead, changes, LeadAction.ENROLLED, user_id,
            f"Lead enrolled (was {previous.value})",
            {"status": previous.value, "enrolled": False},
            _snapshot(changes)
        )
        notifications.notify_roles(
            session,
            db_lead.organization_id,
            MANAGER_ROLES + [OrgRole.MARKETING],
            NotificationType.LEAD_ENROLLED,
            "Nuovo iscritto!",
            message,
            lead_id=db_lead.id,
            exclude_user_id=user_id
        )

    logger.info("Lead %s enrolled", db_lead.id)
    session.refresh(db_lead)
    return db_lead

def claim_lead(session: Session, db_lead: Lead, claiming_user_id: uuid.UUID, now: Optional[datetime] = None) -> Lead:
    """Take over a PERSO lead for a fresh attempt cycle.

    The write only lands if the lead still has the version that was read, so
    of two simultaneous claims exactly one succeeds; the other gets
    ClaimConflictError.
    """
    changes = lifecycle.claim(db_lead, claiming_user_id, now)
    previous_owner_id = db_lead.assigned_to_id
    snapshot = {
        "status": lifecycle.evaluate_expiry(db_lead, now).value,
        "assigned_to_id": _jsonable(previous_owner_id),
        "call_attempts": db_lead.call_attempts,
        "lost_reason": db_lead.lost_reason,
    }

    with atomic(session):
        _write(
            session, db_lead, changes, LeadAction.CLAIMED, claiming_user_id,
            "Lead recuperato dal pool PERSO",
            snapshot,
            {"status": LeadStatus.CONTATTATO.value, "assigned_to_id": str(claiming_user_id), "call_attempts": 0},
            conflict=ClaimConflictError
        )
        if previous_owner_id and previous_owner_id != claiming_user_id:
            notifications.notify(
                session,
                db_lead.organization_id,
                previous_owner_id,
                NotificationType.LEAD_CLAIMED,
                "Lead recuperato",
                f"Il lead {db_lead.name} è stato recuperato da un altro commerciale",
                lead_id=db_lead.id
            )

    logger.info("Lead %s claimed by %s (previous owner %s)", db_lead.id, claiming_user_id, previous_owner_id)
    session.refresh(db_lead)
    return db_lead

def expire_stale_leads(
    session: Session,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None
) -> List[uuid.UUID]:
    """Persist the 15-day inactivity rule for every open lead it applies to.

    Readers already see these leads as PERSO; this only aligns the stored
    rows. Leads changed concurrently are skipped.
    """
    now = lifecycle.as_utc(now or lifecycle.utcnow())
    candidates = session.exec(
        select(Lead)
        .where(Lead.organization_id == org_id)
        .where(Lead.status.in_(lifecycle.OPEN_STATUSES))
        .where(Lead.enrolled == False)  # noqa: E712
        .where(Lead.last_attempt_at < lifecycle.expiry_cutoff(now))
    ).all()

    expired_ids = []
    with atomic(session):
        for lead in candidates:
            changes = lifecycle.expiry_changes(lead, now)
            if not changes:
                continue
            previous = lead.status
            if not conditional_update(session, lead.id, lead.version, changes):
                logger.warning("Lead %s changed during expiry sweep, skipped", lead.id)
                continue
            record_history(
                session,
                lead.id,
                LeadAction.EXPIRED,
                user_id,
                lifecycle.LOST_REASON_INACTIVITY,
                {"status": _jsonable(previous)},
                _snapshot(changes)
            )
            expired_ids.append(lead.id)

    if expired_ids:
        logger.info("Expiry sweep marked %d leads PERSO in organization %s", len(expired_ids), org_id)
    return expired_ids

# -- Bulk --

def _for_each_lead(
    session: Session,
    org_id: uuid.UUID,
    lead_ids: List[uuid.UUID],
    apply
) -> List[Tuple[uuid.UUID, str]]:
    """Call apply(lead, index) per lead, each in its own transaction.

    A lead that is missing or refused by the lifecycle rules does not stop the
    others; it is returned with the reason.
    """
    errors = []
    for index, lead_id in enumerate(lead_ids):
        lead = get_lead(session, lead_id, org_id)
        if lead is None:
            errors.append((lead_id, "Lead not found"))
            continue
        try:
            apply(lead, index)
        except LeadError as error:
            logger.warning("Bulk operation skipped lead %s: %s", lead_id, error)
            errors.append((lead_id, str(error)))
    return errors

def bulk_assign(
    session: Session,
    org_id: uuid.UUID,
    lead_ids: List[uuid.UUID],
    assignee_ids: List[uuid.UUID],
    user_id: uuid.UUID
) -> List[Tuple[uuid.UUID, str]]:
    """Assign leads round-robin over assignee_ids; one id assigns them all."""
    def assign(lead: Lead, index: int) -> None:
        assignee_id = assignee_ids[index % len(assignee_ids)]
        update_lead(session, lead, LeadUpdate(assigned_to_id=assignee_id), user_id)

    errors = _for_each_lead(session, org_id, lead_ids, assign)
    logger.info(
        "Bulk assignment in organization %s: %d of %d leads over %d users",
        org_id, len(lead_ids) - len(errors), len(lead_ids), len(assignee_ids)
    )
    return errors

def bulk_change_status(
    session: Session,
    org_id: uuid.UUID,
    lead_ids: List[uuid.UUID],
    status: LeadStatus,
    lost_reason: Optional[str],
    user_id: uuid.UUID
) -> List[Tuple[uuid.UUID, str]]:
    """Move leads through the transition table; ISCRITTO goes through enrollment."""
    def change(lead: Lead, index: int) -> None:
        if status == LeadStatus.ISCRITTO:
            enroll_lead(session, lead, user_id, lead.course.name if lead.course else None)
        else:
            change_status(session, lead, StatusChange(status=status, lost_reason=lost_reason), user_id)

    errors = _for_each_lead(session, org_id, lead_ids, change)
    logger.info(
        "Bulk status %s in organization %s: %d of %d leads",
        status.value, org_id, len(lead_ids) - len(errors), len(lead_ids)
    )
    return errors
