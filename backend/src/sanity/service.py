import logging
from typing import List, Optional, Sequence, Tuple
from sqlalchemy import delete, update
from sqlmodel import Session, select
from datetime import datetime
import uuid

from src.config import settings
from src.database import atomic
from src.leads.exceptions import InvalidMergeError, MergeConflictError
from src.leads.history_models import LeadHistory, LeadAction
from src.leads.models import Lead
from src.leads.service import conditional_update, record_history
from src.notifications.models import Notification
from src.tasks.models import Task
from src.sanity.duplicates import (
    CourseEquivalence,
    DuplicateGroup,
    DuplicateSeverity,
    detect_duplicates,
    group_key,
    summarize
)
from src.sanity.reconcile import reconcile

logger = logging.getLogger(__name__)

# Rows that point at a lead and follow it into the primary on merge
LEAD_REFERENCES = (
    (LeadHistory, LeadHistory.lead_id),
    (Task, Task.lead_id),
    (Notification, Notification.lead_id),
)

def default_equivalence() -> CourseEquivalence:
    return CourseEquivalence(settings.COURSE_EQUIVALENCES)

def find_duplicates(
    session: Session,
    org_id: uuid.UUID,
    course_id: Optional[uuid.UUID] = None,
    severity: Optional[DuplicateSeverity] = None,
    equivalence: Optional[CourseEquivalence] = None
) -> Tuple[List[DuplicateGroup], dict]:
    leads = session.exec(
        select(Lead)
        .where(Lead.organization_id == org_id)
        .order_by(Lead.created_at)
    ).all()
    groups = detect_duplicates(leads, equivalence or default_equivalence())

    if course_id:
        groups = [g for g in groups if any(member.course_id == course_id for member in g.members)]
    if severity:
        groups = [g for g in groups if g.severity == severity]
    return groups, summarize(groups)

def merge_leads(
    session: Session,
    org_id: uuid.UUID,
    primary_id: uuid.UUID,
    duplicate_ids: Sequence[uuid.UUID],
    user_id: Optional[uuid.UUID] = None,
    equivalence: Optional[CourseEquivalence] = None,
    now: Optional[datetime] = None
) -> Lead:
    """Fold duplicate leads into the primary and delete them, all or nothing.

    Raises InvalidMergeError when the ids do not form one duplicate group and
    MergeConflictError when a member vanished or the primary changed meanwhile.
    """
    duplicate_ids = list(duplicate_ids)
    if not duplicate_ids:
        raise InvalidMergeError("At least one duplicate id is required")
    if len(set(duplicate_ids)) != len(duplicate_ids):
        raise InvalidMergeError("Duplicate ids must be distinct")
    if primary_id in duplicate_ids:
        raise InvalidMergeError("The primary lead cannot also be listed as a duplicate")

    equivalence = equivalence or default_equivalence()
    all_ids = [primary_id] + duplicate_ids
    found = {
        lead.id: lead
        for lead in session.exec(select(Lead).where(Lead.id.in_(all_ids))).all()
    }
    foreign = [lead_id for lead_id, lead in found.items() if lead.organization_id != org_id]
    if foreign:
        raise InvalidMergeError(
            f"Leads belong to another organization: {', '.join(str(i) for i in foreign)}"
        )
    missing = [lead_id for lead_id in all_ids if lead_id not in found]
    if missing:
        raise MergeConflictError(
            f"Leads no longer exist (already merged?): {', '.join(str(i) for i in missing)}"
        )

    primary = found[primary_id]
    duplicates = [found[lead_id] for lead_id in duplicate_ids]
    expected_key = group_key(primary, equivalence)
    strangers = [d.id for d in duplicates if group_key(d, equivalence) != expected_key]
    if strangers:
        raise InvalidMergeError(
            f"Leads {', '.join(str(i) for i in strangers)} are not duplicates of {primary_id}"
        )

    changes = reconcile(primary, duplicates, now)
    expected_version = primary.version

    with atomic(session):
        for model, column in LEAD_REFERENCES:
            session.execute(
                update(model)
                .where(column.in_(duplicate_ids))
                .values(lead_id=primary_id)
            )

        if not conditional_update(session, primary_id, expected_version, changes):
            raise MergeConflictError(f"Lead {primary_id} changed during the merge")

        deleted = session.execute(delete(Lead).where(Lead.id.in_(duplicate_ids))).rowcount
        if deleted != len(duplicate_ids):
            raise MergeConflictError("Some duplicates were removed by a concurrent merge")

        record_history(
            session,
            primary_id,
            LeadAction.MERGED,
            user_id,
            f"Lead unificato: {len(duplicate_ids)} duplicati eliminati e dati combinati",
            new_value={
                "merged_ids": [str(i) for i in duplicate_ids],
                "enrolled": changes.get("enrolled", primary.enrolled),
                "call_attempts": changes["call_attempts"],
            }
        )

    logger.info("Merged %d duplicates into lead %s", len(duplicate_ids), primary_id)
    session.refresh(primary)
    return primary
