"""
Manual edits to a draft class distribution.

Every operation returns a new distribution and leaves its input untouched, so
earlier snapshots kept in a DistributionHistory stay valid for undo/redo.
"""
import copy
import logging
from typing import List, Dict, Optional

from models import StaleDistributionError, SwapRefusedError, UnknownClassError

logger = logging.getLogger(__name__)


def _copy_distribution(distribution: Dict[str, List[Dict]]) -> Dict[str, List[Dict]]:
    return {class_name: list(students) for class_name, students in distribution.items()}


def _contains(students: List[Dict], candidate_id) -> bool:
    return any(s['id'] == candidate_id for s in students)


def _require_class(distribution: Dict[str, List[Dict]], class_name: str):
    if class_name not in distribution:
        raise UnknownClassError(f"Class {class_name} is not part of this distribution")


def _require_placement(distribution: Dict[str, List[Dict]], candidate_id, class_name: str):
    if not _contains(distribution.get(class_name, []), candidate_id):
        raise StaleDistributionError(
            f"Candidate {candidate_id} is no longer in class {class_name}"
        )


def find_candidate_class(distribution: Dict[str, List[Dict]], candidate_id) -> Optional[str]:
    for class_name, students in distribution.items():
        if _contains(students, candidate_id):
            return class_name
    return None


def move_candidate(distribution: Dict[str, List[Dict]], candidate_id,
                   from_class: str, to_class: str) -> Dict[str, List[Dict]]:
    """Move a candidate to the end of another class."""
    if from_class == to_class:
        return distribution

    _require_class(distribution, to_class)
    _require_placement(distribution, candidate_id, from_class)

    new_distribution = _copy_distribution(distribution)
    candidate = next(s for s in new_distribution[from_class] if s['id'] == candidate_id)
    new_distribution[from_class] = [s for s in new_distribution[from_class] if s['id'] != candidate_id]
    new_distribution[to_class].append(candidate)

    logger.info(f"Moved candidate {candidate_id} from {from_class} to {to_class}")
    return new_distribution


def remove_candidate(distribution: Dict[str, List[Dict]], candidate_id,
                     from_class: str) -> Dict[str, List[Dict]]:
    """Take a candidate out of the distribution, back to the unassigned pool."""
    _require_placement(distribution, candidate_id, from_class)

    new_distribution = _copy_distribution(distribution)
    new_distribution[from_class] = [s for s in new_distribution[from_class] if s['id'] != candidate_id]

    logger.info(f"Removed candidate {candidate_id} from {from_class}")
    return new_distribution


def add_candidate(distribution: Dict[str, List[Dict]], candidate: Dict,
                  to_class: str) -> Dict[str, List[Dict]]:
    """
    Put a candidate in a class. A candidate already placed elsewhere is taken
    out of that class first.
    """
    _require_class(distribution, to_class)
    if _contains(distribution[to_class], candidate['id']):
        return distribution

    new_distribution = _copy_distribution(distribution)
    existing_class = find_candidate_class(new_distribution, candidate['id'])
    if existing_class is not None:
        new_distribution[existing_class] = [
            s for s in new_distribution[existing_class] if s['id'] != candidate['id']
        ]
    new_distribution[to_class].append(candidate)

    logger.info(f"Added candidate {candidate['id']} to {to_class}")
    return new_distribution


def swap_candidates(distribution: Dict[str, List[Dict]],
                    first_id, first_class: str,
                    second_id, second_class: str) -> Dict[str, List[Dict]]:
    """Exchange the classes of two candidates sitting in different classes."""
    if first_class == second_class:
        raise SwapRefusedError("Both candidates are already in the same class")

    _require_placement(distribution, first_id, first_class)
    _require_placement(distribution, second_id, second_class)

    new_distribution = _copy_distribution(distribution)
    first = next(s for s in new_distribution[first_class] if s['id'] == first_id)
    second = next(s for s in new_distribution[second_class] if s['id'] == second_id)

    new_distribution[first_class] = [s for s in new_distribution[first_class] if s['id'] != first_id]
    new_distribution[second_class] = [s for s in new_distribution[second_class] if s['id'] != second_id]
    new_distribution[first_class].append(second)
    new_distribution[second_class].append(first)

    logger.info(f"Swapped candidate {first_id} ({first_class}) with {second_id} ({second_class})")
    return new_distribution


def list_assigned_candidates(distribution: Dict[str, List[Dict]]) -> List[Dict]:
    """Flatten the distribution for pickers, tagging each candidate with its class."""
    assigned = []
    for class_name, students in distribution.items():
        for candidate in students:
            assigned.append(dict(
                candidate,
                class_name=class_name,
                unique_id=f"{class_name}-{candidate['id']}",
            ))
    return assigned


class DistributionHistory:
    """Undo/redo stack of distribution snapshots."""

    def __init__(self, initial: Optional[Dict[str, List[Dict]]] = None):
        self._snapshots = []
        self._index = -1
        if initial is not None:
            self.push(initial)

    @property
    def current(self) -> Optional[Dict[str, List[Dict]]]:
        if self._index < 0:
            return None
        return copy.deepcopy(self._snapshots[self._index])

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._snapshots) - 1

    def __len__(self):
        return len(self._snapshots)

    def push(self, distribution: Dict[str, List[Dict]]):
        # A new edit after an undo drops the redo tail
        del self._snapshots[self._index + 1:]
        self._snapshots.append(copy.deepcopy(distribution))
        self._index = len(self._snapshots) - 1

    def undo(self) -> Optional[Dict[str, List[Dict]]]:
        if not self.can_undo:
            return None
        self._index -= 1
        return self.current

    def redo(self) -> Optional[Dict[str, List[Dict]]]:
        if not self.can_redo:
            return None
        self._index += 1
        return self.current
