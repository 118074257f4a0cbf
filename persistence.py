"""
Writes a confirmed class division back to the database and moves finished
candidates into the permanent student roster.

Records are written one at a time. A failing record is logged and collected in
the BatchResult, and the loop carries on with the rest.
"""
import logging
import sqlite3
from typing import Dict, List, Tuple

from class_division import class_division
from database import (
    get_db, get_assigned_candidates, get_highest_nis, set_candidate_assignment, set_candidate_class,
    clear_candidate_assignment, now_iso,
)
from models import BatchResult

logger = logging.getLogger(__name__)

Assignment = Tuple[int, str, str]


def next_identifier_ordinal(academic_year: str, algorithm=None) -> int:
    """First free NIS ordinal for the year, after every NIS already stored."""
    algorithm = algorithm or class_division
    highest = get_highest_nis(algorithm.identifier_prefix(academic_year))
    if not highest:
        return 1
    return int(highest.rsplit('.', 1)[1]) + 1


def build_assignments(distribution: Dict[str, List[Dict]], academic_year: str,
                      algorithm=None) -> List[Assignment]:
    """(candidate_id, class_name, nis) for every candidate, in numbering order."""
    algorithm = algorithm or class_division
    start = next_identifier_ordinal(academic_year, algorithm)
    identifiers = algorithm.generate_identifiers(distribution, academic_year, start)
    return [
        (candidate['id'], class_name, identifiers[candidate['id']])
        for class_name in sorted(distribution)
        for candidate in distribution[class_name]
    ]


def commit_assignments(assignments: List[Assignment]) -> BatchResult:
    result = BatchResult()
    for candidate_id, class_name, nis in assignments:
        try:
            updated = set_candidate_assignment(candidate_id, class_name, nis)
            if updated == 0:
                result.add_failure(candidate_id, 'Candidate not found')
                logger.error(f"Candidate {candidate_id} not found while saving class {class_name}")
                continue
            result.add_success(candidate_id)
        except sqlite3.Error as e:
            get_db().rollback()
            result.add_failure(candidate_id, str(e))
            logger.error(f"Error saving class for candidate {candidate_id}: {str(e)}")

    logger.info(f"Saved {result.success_count} class assignments, {result.failure_count} failed")
    return result


def commit_distribution(distribution: Dict[str, List[Dict]], academic_year: str,
                        algorithm=None) -> Tuple[BatchResult, List[Assignment]]:
    """
    Number the distribution and save class + NIS on every candidate.

    Identifiers are generated before the first write, so a distribution that
    cannot be numbered raises without touching the database.
    """
    assignments = build_assignments(distribution, academic_year, algorithm)
    return commit_assignments(assignments), assignments


def retry_failed(result: BatchResult, assignments: List[Assignment]) -> BatchResult:
    failed_ids = set(result.failed_ids)
    return commit_assignments([a for a in assignments if a[0] in failed_ids])


def transfer_to_roster(academic_year: str) -> BatchResult:
    """
    Copy accepted, class-assigned candidates into the students table.

    The roster insert and the transferred flag are written in one transaction
    per candidate, so neither can land without the other.
    """
    db = get_db()
    result = BatchResult()

    for candidate in get_assigned_candidates():
        candidate_id = candidate['id']
        try:
            with db:
                db.execute(
                    """INSERT INTO students (source_candidate_id, full_name, nis, class_name,
                    academic_year, gender, is_active) VALUES (?, ?, ?, ?, ?, ?, 1)""",
                    (candidate_id, candidate['full_name'], candidate['nis'],
                     candidate['class_name'], academic_year, candidate['gender'])
                )
                cur = db.execute(
                    """UPDATE candidates SET is_transferred = 1, transferred_at = ?
                    WHERE id = ? AND is_transferred = 0""",
                    (now_iso(), candidate_id)
                )
                if cur.rowcount != 1:
                    raise sqlite3.IntegrityError(f"Candidate {candidate_id} was already transferred")
            result.add_success(candidate_id)
        except sqlite3.Error as e:
            result.add_failure(candidate_id, str(e))
            logger.error(f"Error transferring candidate {candidate_id}: {str(e)}")

    logger.info(f"Transferred {result.success_count} candidates to the roster, {result.failure_count} failed")
    return result


def reset_class_assignments() -> BatchResult:
    """Clear saved classes (and NIS) for candidates that have not been transferred."""
    result = BatchResult()
    for candidate in get_assigned_candidates():
        try:
            clear_candidate_assignment(candidate['id'])
            result.add_success(candidate['id'])
        except sqlite3.Error as e:
            get_db().rollback()
            result.add_failure(candidate['id'], str(e))
            logger.error(f"Error resetting class for candidate {candidate['id']}: {str(e)}")
    return result


def update_class_assignment(candidate_id, new_class: str) -> bool:
    """Move an already saved candidate to another class"""
    try:
        return set_candidate_class(candidate_id, new_class) == 1
    except sqlite3.Error as e:
        get_db().rollback()
        logger.error(f"Error updating class for candidate {candidate_id}: {str(e)}")
        return False


def load_saved_distribution() -> Dict[str, List[Dict]]:
    distribution = {}
    for row in get_assigned_candidates():
        candidate = dict(row)
        distribution.setdefault(candidate['class_name'], []).append(candidate)
    return {class_name: distribution[class_name] for class_name in sorted(distribution)}
