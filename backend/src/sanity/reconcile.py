"""
Field reconciliation for merging duplicate leads into a primary record.

The primary's values win on conflict. Exceptions: enrollment, contact and
target flags are OR-ed, enrolled_at is the earliest among enrolled members,
call_attempts is the maximum (never a sum), and notes are concatenated with
attribution. Empty contact fields of the primary are filled from duplicates.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from src.leads.lifecycle import as_utc, utcnow
from src.leads.models import LeadStatus

# Primary value kept unless empty, then the first duplicate providing one
FILL_IF_EMPTY = ("email", "phone", "source", "assigned_to_id")


def _earliest(values) -> Optional[datetime]:
    present = [as_utc(value) for value in values if value is not None]
    return min(present) if present else None


def merge_notes(primary, duplicates: List[Any], now: datetime) -> str:
    notes = primary.notes or ""
    for duplicate in duplicates:
        if duplicate.notes:
            notes += f"\n\n[Da duplicato {duplicate.id}]: {duplicate.notes}"

    trailer = [f"[MERGE {now.isoformat()}] Uniti {len(duplicates)} duplicati:"]
    for duplicate in duplicates:
        trailer.append(
            f"- ID: {duplicate.id}, Nome: {duplicate.name}, Creato: {as_utc(duplicate.created_at).isoformat()}"
        )
    return (notes + "\n\n" + "\n".join(trailer)).strip()


def reconcile(primary, duplicates: List[Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Column values for the primary lead once the duplicates are folded in."""
    now = as_utc(now or utcnow())
    members = [primary] + list(duplicates)
    changes: Dict[str, Any] = {}

    for column in FILL_IF_EMPTY:
        if getattr(primary, column) is None:
            donor = next((d for d in duplicates if getattr(d, column) is not None), None)
            if donor is not None:
                changes[column] = getattr(donor, column)

    if primary.call_outcome is None:
        donor = next((d for d in duplicates if d.call_outcome is not None), None)
        if donor is not None:
            changes["call_outcome"] = donor.call_outcome
            changes["outcome_notes"] = donor.outcome_notes

    contacted = [member for member in members if member.contacted]
    if contacted and not primary.contacted:
        changes["contacted"] = True
        changes["contacted_at"] = _earliest(member.contacted_at for member in contacted)

    if not primary.is_target:
        target = next((d for d in duplicates if d.is_target), None)
        if target is not None:
            changes["is_target"] = True
            changes["target_note"] = primary.target_note or target.target_note

    changes["call_attempts"] = max(member.call_attempts for member in members)

    enrolled = [member for member in members if member.enrolled]
    if enrolled:
        changes["enrolled"] = True
        changes["enrolled_at"] = _earliest(member.enrolled_at for member in enrolled) or now
        changes["status"] = LeadStatus.ISCRITTO
        changes["lost_reason"] = None
        changes["lost_at"] = None

    changes["notes"] = merge_notes(primary, duplicates, now)
    changes["updated_at"] = now
    return changes
