# Candidates and roster students are plain dicts (sqlite3.Row converted with dict()).
# This module only holds the shared constants, error types and the batch result
# returned by the persistence layer.
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

GENDER_MALE = 'L'
GENDER_FEMALE = 'P'
GENDERS = (GENDER_MALE, GENDER_FEMALE)

STATUS_ACCEPTED = 'accepted'
STATUS_PENDING = 'pending'
STATUS_REJECTED = 'rejected'
STATUSES = (STATUS_ACCEPTED, STATUS_PENDING, STATUS_REJECTED)

UNKNOWN_SCHOOL = 'Unknown'

MAX_IDENTIFIERS = 999
MAX_CLASSES = 26

ACADEMIC_YEAR_PATTERN = re.compile(r'^(\d{4})/(\d{4})$')


class DivisionError(Exception):
    """Base class for precondition failures in the class division workflow."""


class EmptyRosterError(DivisionError):
    pass


class IdentifierSpaceExhaustedError(DivisionError):
    pass


class InvalidAcademicYearError(DivisionError):
    pass


class UnknownClassError(DivisionError):
    pass


class StaleDistributionError(DivisionError):
    """A candidate is no longer in the class the caller expected."""


class SwapRefusedError(DivisionError):
    pass


class CandidateNotFoundError(DivisionError):
    pass


class CandidateLockedError(DivisionError):
    """The candidate is already in the student roster and can no longer change."""


@dataclass
class BatchResult:
    succeeded: List[int] = field(default_factory=list)
    failed: List[Dict] = field(default_factory=list)

    def add_success(self, candidate_id: int):
        self.succeeded.append(candidate_id)

    def add_failure(self, candidate_id: int, error: str):
        self.failed.append({'id': candidate_id, 'error': error})

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed_ids(self) -> List[int]:
        return [f['id'] for f in self.failed]

    def to_dict(self) -> Dict:
        return {
            'succeeded': list(self.succeeded),
            'failed': list(self.failed),
            'success_count': self.success_count,
            'failure_count': self.failure_count,
        }


def parse_academic_year(academic_year: str):
    """Split 'YYYY/YYYY' into its two years, raising InvalidAcademicYearError otherwise."""
    match = ACADEMIC_YEAR_PATTERN.match((academic_year or '').strip())
    if not match:
        raise InvalidAcademicYearError(
            f"Academic year must look like 'YYYY/YYYY', got {academic_year!r}"
        )
    first, second = match.group(1), match.group(2)
    if int(second) != int(first) + 1:
        raise InvalidAcademicYearError(
            f"Academic year {academic_year!r} must span two consecutive years"
        )
    return first, second


def current_academic_year(today: Optional[date] = None) -> str:
    """
    Academic year in effect on the given day.
    A new year starts in August: 2025-08-01 -> '2025/2026', 2025-07-31 -> '2024/2025'.
    """
    today = today or date.today()
    if today.month >= 8:
        return f"{today.year}/{today.year + 1}"
    return f"{today.year - 1}/{today.year}"
