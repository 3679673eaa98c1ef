"""
Duplicate lead detection.

Two leads are duplicates when their normalized names match and they ask for
the same course. Courses sold under several names are folded together through
a CourseEquivalence table before grouping. Detection never writes; it is an
advisory report and may run on a slightly stale snapshot.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import uuid

from src.leads.lifecycle import as_utc


class DuplicateSeverity(str, Enum):
    CRITICAL = "critical"  # more than one enrolled: possible double payment
    WARNING = "warning"    # exactly one enrolled
    INFO = "info"          # nobody enrolled


RECOMMENDATIONS = {
    DuplicateSeverity.CRITICAL: "Più iscritti - possibile doppio pagamento, verificare",
    DuplicateSeverity.WARNING: "Uno iscritto - unire i record non iscritti in quello iscritto",
    DuplicateSeverity.INFO: "Nessuno iscritto - unire in un unico record",
}


def normalize_name(value: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return " ".join((value or "").lower().split())


class CourseEquivalence:
    """Bidirectional lookup between a canonical course name and its aliases."""

    def __init__(self, table: Optional[Mapping[str, Iterable[str]]] = None):
        self._canonical: Dict[str, str] = {}
        self._aliases: Dict[str, List[str]] = {}
        for canonical, aliases in (table or {}).items():
            key = normalize_name(canonical)
            names = [normalize_name(alias) for alias in aliases]
            self._aliases[key] = names
            self._canonical[key] = key
            for alias in names:
                self._canonical[alias] = key

    def canonical(self, course_name: Optional[str]) -> Optional[str]:
        """Canonical name for a canonical or alias name, None if unknown."""
        if not course_name:
            return None
        return self._canonical.get(normalize_name(course_name))

    def equivalents(self, course_name: str) -> List[str]:
        """Every name of the same course offering, canonical first."""
        canonical = self.canonical(course_name)
        if canonical is None:
            return [normalize_name(course_name)]
        return [canonical] + self._aliases[canonical]

    def course_key(self, course_id: uuid.UUID, course_name: Optional[str]) -> str:
        canonical = self.canonical(course_name)
        if canonical:
            return f"course:{canonical}"
        return f"id:{course_id}"


def course_name_of(lead) -> Optional[str]:
    course = getattr(lead, "course", None)
    return course.name if course is not None else None


def group_key(lead, equivalence: CourseEquivalence) -> Tuple[str, str]:
    return normalize_name(lead.name), equivalence.course_key(lead.course_id, course_name_of(lead))


def _creation_order(lead):
    return as_utc(lead.created_at), str(lead.id)


def classify(members: List[Any]) -> DuplicateSeverity:
    enrolled = sum(1 for member in members if member.enrolled)
    if enrolled > 1:
        return DuplicateSeverity.CRITICAL
    if enrolled == 1:
        return DuplicateSeverity.WARNING
    return DuplicateSeverity.INFO


def recommend_primary(members: List[Any]):
    """Enrolled member created first, else the member created first."""
    enrolled = [member for member in members if member.enrolled]
    return min(enrolled or members, key=_creation_order)


@dataclass
class DuplicateGroup:
    normalized_name: str
    course_key: str
    course_id: uuid.UUID
    course_name: Optional[str]
    members: List[Any] = field(default_factory=list)
    severity: DuplicateSeverity = DuplicateSeverity.INFO
    recommended_primary_id: Optional[uuid.UUID] = None

    @property
    def key(self) -> str:
        return f"{self.normalized_name}|{self.course_key}"

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def enrolled_count(self) -> int:
        return sum(1 for member in self.members if member.enrolled)

    @property
    def recommendation(self) -> str:
        return RECOMMENDATIONS[self.severity]


def detect_duplicates(leads: Iterable[Any], equivalence: Optional[CourseEquivalence] = None) -> List[DuplicateGroup]:
    """Group leads by (normalized name, course key) and report groups of two or more.

    Groups come largest first, then by course name.
    """
    equivalence = equivalence or CourseEquivalence()
    buckets: Dict[Tuple[str, str], List[Any]] = defaultdict(list)
    for lead in leads:
        buckets[group_key(lead, equivalence)].append(lead)

    groups = []
    for (name, course_key), members in buckets.items():
        if len(members) < 2:
            continue
        members = sorted(members, key=_creation_order)
        groups.append(DuplicateGroup(
            normalized_name=name,
            course_key=course_key,
            course_id=members[0].course_id,
            course_name=course_name_of(members[0]),
            members=members,
            severity=classify(members),
            recommended_primary_id=recommend_primary(members).id,
        ))

    groups.sort(key=lambda group: (-group.count, (group.course_name or "").lower()))
    return groups


def summarize(groups: List[DuplicateGroup]) -> Dict[str, int]:
    return {
        "total_groups": len(groups),
        "affected_leads": sum(group.count for group in groups),
        "groups_with_enrolled": sum(1 for group in groups if group.enrolled_count > 0),
        "potential_double_payments": sum(
            1 for group in groups if group.severity == DuplicateSeverity.CRITICAL
        ),
    }
