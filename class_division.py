import logging
from collections import Counter
from typing import List, Dict, Tuple

from models import (
    GENDER_MALE, GENDER_FEMALE, MAX_CLASSES, MAX_IDENTIFIERS, UNKNOWN_SCHOOL,
    EmptyRosterError, IdentifierSpaceExhaustedError, parse_academic_year,
)


class ClassDivisionAlgorithm:
    def __init__(self, grade_level: int = 7):
        self.logger = logging.getLogger(__name__)
        self.grade_level = grade_level

    @property
    def grade_marker(self) -> str:
        return f"{self.grade_level:02d}"

    def class_names(self, num_classes: int) -> List[str]:
        """Class names for the grade, e.g. 3 -> ['7A', '7B', '7C']."""
        num_classes = self.clamp_class_count(num_classes)
        return [f"{self.grade_level}{chr(ord('A') + i)}" for i in range(num_classes)]

    @staticmethod
    def clamp_class_count(num_classes: int) -> int:
        return max(1, min(int(num_classes), MAX_CLASSES))

    def partition_roster(self, candidates: List[Dict]) -> Tuple[List[Dict], List[Dict]]:
        """
        Split the roster by gender and order each group by origin school.

        Returns:
            Tuple of (males, females), each sorted by school name. sorted() is
            stable, so candidates from the same school keep their input order.
        """
        males = []
        females = []
        for candidate in candidates:
            gender = candidate.get('gender')
            if gender == GENDER_MALE:
                males.append(candidate)
            elif gender == GENDER_FEMALE:
                females.append(candidate)
            else:
                self.logger.warning(
                    f"Skipping candidate {candidate.get('id')} with unknown gender {gender!r}"
                )

        def school_key(candidate):
            return candidate.get('origin_school') or ''

        return sorted(males, key=school_key), sorted(females, key=school_key)

    def distribute(self, males: List[Dict], females: List[Dict],
                   num_classes: int) -> Dict[str, List[Dict]]:
        """
        Deal both groups round-robin into the classes.

        Each group starts again from the first class, so for every gender the
        class counts differ by at most one.
        """
        names = self.class_names(num_classes)
        distribution = {name: [] for name in names}

        for group in (males, females):
            class_index = 0
            for candidate in group:
                distribution[names[class_index]].append(candidate)
                class_index = (class_index + 1) % len(names)

        return distribution

    def generate_class_distribution(self, unassigned: List[Dict],
                                    num_classes: int) -> Dict[str, List[Dict]]:
        if not unassigned:
            raise EmptyRosterError("There are no candidates waiting for a class")

        males, females = self.partition_roster(unassigned)
        distribution = self.distribute(males, females, num_classes)
        self.logger.info(
            f"Distributed {len(males)} male and {len(females)} female candidates "
            f"into {len(distribution)} classes"
        )
        return distribution

    def identifier_prefix(self, academic_year: str) -> str:
        """'2025/2026' -> '25.26.07'"""
        first_year, second_year = parse_academic_year(academic_year)
        return f"{first_year[-2:]}.{second_year[-2:]}.{self.grade_marker}"

    def generate_identifiers(self, distribution: Dict[str, List[Dict]],
                             academic_year: str, start: int = 1) -> Dict[int, str]:
        """
        Assign a NIS to every candidate in the distribution.

        Classes are walked in name order and each class in its current list
        order. The ordinal runs across the whole cohort, it does not restart
        per class.

        Args:
            start: First ordinal to hand out. A later batch in the same year
                starts after the highest ordinal already stored.
        """
        prefix = self.identifier_prefix(academic_year)

        total = sum(len(students) for students in distribution.values())
        if start - 1 + total > MAX_IDENTIFIERS:
            raise IdentifierSpaceExhaustedError(
                f"Cannot number {total} candidates starting at {start}, "
                f"the identifier holds at most {MAX_IDENTIFIERS}"
            )

        identifiers = {}
        ordinal = start - 1
        for class_name in sorted(distribution):
            for candidate in distribution[class_name]:
                ordinal += 1
                identifiers[candidate['id']] = f"{prefix}.{ordinal:03d}"

        return identifiers

    def apply_identifiers(self, distribution: Dict[str, List[Dict]],
                          academic_year: str, start: int = 1) -> Dict[str, List[Dict]]:
        """Copy of the distribution with 'nis' and 'class_name' filled in on each candidate."""
        identifiers = self.generate_identifiers(distribution, academic_year, start)
        return {
            class_name: [
                dict(candidate, class_name=class_name, nis=identifiers[candidate['id']])
                for candidate in students
            ]
            for class_name, students in distribution.items()
        }

    def get_class_stats(self, candidates: List[Dict]) -> Dict:
        schools = []
        for candidate in candidates:
            school = candidate.get('origin_school')
            if school not in schools:
                schools.append(school)

        return {
            'total': len(candidates),
            'males': sum(1 for c in candidates if c.get('gender') == GENDER_MALE),
            'females': sum(1 for c in candidates if c.get('gender') == GENDER_FEMALE),
            'school_count': len(schools),
            'schools': schools,
        }

    def get_school_rankings(self, candidates: List[Dict]) -> List[Dict]:
        """
        Candidate counts per origin school with a gender breakdown, largest first.
        Candidates without a school are grouped under UNKNOWN_SCHOOL.
        """
        rankings = {}
        for candidate in candidates:
            school = (candidate.get('origin_school') or '').strip() or UNKNOWN_SCHOOL
            entry = rankings.setdefault(school, {'school': school, 'total': 0, 'males': 0, 'females': 0})
            entry['total'] += 1
            if candidate.get('gender') == GENDER_MALE:
                entry['males'] += 1
            elif candidate.get('gender') == GENDER_FEMALE:
                entry['females'] += 1

        return sorted(rankings.values(), key=lambda entry: entry['total'], reverse=True)

    def check_class_balance(self, distribution: Dict[str, List[Dict]]) -> List[Dict]:
        """
        Flag classes that ended up lopsided after manual edits.

        A class is unbalanced on gender when males outnumber females more than
        two to one (or the reverse), and on size when it is more than three
        candidates away from the average class size.
        """
        if not distribution:
            return []

        total = sum(len(students) for students in distribution.values())
        average = total / len(distribution)

        unbalanced = []
        for class_name, students in distribution.items():
            stats = self.get_class_stats(students)
            ratio = stats['males'] / (stats['females'] or 1)
            gender_unbalanced = ratio > 2 or ratio < 0.5
            size_unbalanced = abs(stats['total'] - average) > 3

            if gender_unbalanced or size_unbalanced:
                unbalanced.append({
                    'class_name': class_name,
                    'reason': 'gender' if gender_unbalanced else 'size',
                    'males': stats['males'],
                    'females': stats['females'],
                    'total': stats['total'],
                })

        return unbalanced

    def validate_distribution(self, distribution: Dict[str, List[Dict]]) -> List[str]:
        """
        Validate that no candidate sits in more than one class.
        Returns a list of violations found.
        """
        placements = Counter()
        classes_by_id = {}
        for class_name, students in distribution.items():
            for candidate in students:
                placements[candidate['id']] += 1
                classes_by_id.setdefault(candidate['id'], []).append(class_name)

        violations = []
        for candidate_id, count in placements.items():
            if count > 1:
                violations.append(
                    f"Candidate {candidate_id} placed {count} times: "
                    f"{', '.join(classes_by_id[candidate_id])}"
                )
        return violations


# Global wrapper functions for convenience
def generate_class_distribution(unassigned: List[Dict], num_classes: int,
                                grade_level: int = 7) -> Dict[str, List[Dict]]:
    """
    Convenience wrapper for the ClassDivisionAlgorithm class.
    """
    algorithm = ClassDivisionAlgorithm(grade_level)
    return algorithm.generate_class_distribution(unassigned, num_classes)


def generate_identifiers(distribution: Dict[str, List[Dict]], academic_year: str,
                         grade_level: int = 7, start: int = 1) -> Dict[int, str]:
    algorithm = ClassDivisionAlgorithm(grade_level)
    return algorithm.generate_identifiers(distribution, academic_year, start)


# Global instance for import
class_division = ClassDivisionAlgorithm()
