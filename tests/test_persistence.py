import pytest

import database
import persistence
from models import IdentifierSpaceExhaustedError
from persistence import (
    commit_distribution, retry_failed, transfer_to_roster, reset_class_assignments,
    update_class_assignment, load_saved_distribution, next_identifier_ordinal,
)

YEAR = '2025/2026'


def _register(name, gender, school='SDN 1', status='accepted'):
    return database.add_candidate(
        {'full_name': name, 'gender': gender, 'origin_school': school, 'status': status}, YEAR
    )


@pytest.fixture
def candidates(db_app):
    ids = [
        _register('Ahmad', 'L'),
        _register('Budi', 'L'),
        _register('Citra', 'P'),
        _register('Dewi', 'P'),
    ]
    return [dict(database.get_candidate(i)) for i in ids]


def test_registration_numbers_are_sequential(db_app):
    first = _register('Ahmad', 'L')
    second = _register('Budi', 'L')

    assert database.get_candidate(first)['registration_number'] == 'PMB20252026001'
    assert database.get_candidate(second)['registration_number'] == 'PMB20252026002'
    assert database.next_registration_number('2026/2027') == 'PMB20262027001'


def test_unassigned_candidates_exclude_other_statuses(db_app):
    _register('Ahmad', 'L')
    _register('Budi', 'L', status='pending')
    assert [c['full_name'] for c in database.get_unassigned_candidates()] == ['Ahmad']


def test_commit_distribution_saves_class_and_nis(candidates):
    a, b, c, d = candidates
    distribution = {'7B': [b, d], '7A': [a, c]}

    result, assignments = commit_distribution(distribution, YEAR)

    assert result.ok
    assert result.success_count == 4
    assert assignments[0] == (a['id'], '7A', '25.26.07.001')
    saved = {row['full_name']: (row['class_name'], row['nis']) for row in database.get_all_candidates()}
    assert saved['Citra'] == ('7A', '25.26.07.002')
    assert saved['Dewi'] == ('7B', '25.26.07.004')
    assert database.get_unassigned_candidates() == []


def test_commit_refuses_oversized_distribution_before_writing(candidates, make_candidate):
    filler = [make_candidate(1000 + i, 'L') for i in range(999)]
    distribution = {'7A': [candidates[0]], '7B': filler}

    with pytest.raises(IdentifierSpaceExhaustedError):
        commit_distribution(distribution, YEAR)
    assert database.get_candidate(candidates[0]['id'])['class_name'] is None


def test_commit_continues_past_failures_and_retries(candidates, make_candidate):
    a, b, c, d = candidates
    missing = make_candidate(9999, 'L')
    distribution = {'7A': [a, missing, b], '7B': [c]}

    # Budi's row refuses writes until the trigger is dropped
    database.execute_db(f"""CREATE TRIGGER lock_candidate BEFORE UPDATE ON candidates
        WHEN OLD.id = {b['id']} BEGIN SELECT RAISE(ABORT, 'row is locked'); END""")

    result, assignments = commit_distribution(distribution, YEAR)

    assert result.success_count == 2
    assert sorted(result.failed_ids) == sorted([9999, b['id']])
    errors = {f['id']: f['error'] for f in result.failed}
    assert 'row is locked' in errors[b['id']]
    assert errors[9999] == 'Candidate not found'
    assert database.get_candidate(a['id'])['class_name'] == '7A'
    assert database.get_candidate(b['id'])['nis'] is None
    assert database.get_candidate(c['id'])['nis'] == '25.26.07.004'

    database.execute_db("DROP TRIGGER lock_candidate")
    retried = retry_failed(result, assignments)

    assert retried.succeeded == [b['id']]
    assert retried.failed_ids == [9999]
    assert database.get_candidate(b['id'])['nis'] == '25.26.07.003'


def test_transfer_to_roster_copies_and_marks(candidates):
    a, b, c, d = candidates
    commit_distribution({'7A': [a, c], '7B': [b]}, YEAR)

    result = transfer_to_roster(YEAR)

    assert result.ok
    assert sorted(result.succeeded) == sorted([a['id'], b['id'], c['id']])
    roster = [dict(s) for s in database.get_all_roster_students()]
    assert [(s['full_name'], s['nis'], s['class_name']) for s in roster] == [
        ('Ahmad', '25.26.07.001', '7A'),
        ('Citra', '25.26.07.002', '7A'),
        ('Budi', '25.26.07.003', '7B'),
    ]
    assert all(s['is_active'] == 1 and s['academic_year'] == YEAR for s in roster)

    transferred = database.get_candidate(a['id'])
    assert transferred['is_transferred'] == 1
    assert transferred['transferred_at'] is not None
    # Dewi was never assigned
    assert database.get_candidate(d['id'])['is_transferred'] == 0

    assert transfer_to_roster(YEAR).total == 0


def test_failed_copy_does_not_mark_transferred(candidates):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a]}, YEAR)
    # A class without a NIS cannot be copied into the roster
    database.set_candidate_class(b['id'], '7B')

    result = transfer_to_roster(YEAR)

    assert result.succeeded == [a['id']]
    assert result.failed_ids == [b['id']]
    assert database.get_candidate(b['id'])['is_transferred'] == 0
    assert len(database.get_all_roster_students()) == 1


def test_reset_class_assignments(candidates):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a], '7B': [b]}, YEAR)

    result = reset_class_assignments()

    assert result.success_count == 2
    row = database.get_candidate(a['id'])
    assert row['class_name'] is None
    assert row['nis'] is None
    assert len(database.get_unassigned_candidates()) == 4


def test_update_class_assignment_and_saved_distribution(candidates):
    a, b, c, d = candidates
    commit_distribution({'7B': [b], '7A': [a, c, d]}, YEAR)

    assert update_class_assignment(d['id'], '7B')
    assert not update_class_assignment(9999, '7B')

    saved = load_saved_distribution()
    assert list(saved) == ['7A', '7B']
    assert [s['full_name'] for s in saved['7B']] == ['Dewi', 'Budi']


def test_second_batch_continues_numbering(candidates):
    a, b, c, d = candidates
    first, _ = commit_distribution({'7A': [a, c]}, YEAR)
    assert first.ok

    second, assignments = commit_distribution({'7A': [b], '7B': [d]}, YEAR)

    assert second.ok
    assert [nis for _, _, nis in assignments] == ['25.26.07.003', '25.26.07.004']
    assert database.get_candidate(a['id'])['nis'] == '25.26.07.001'
    assert database.get_candidate(d['id'])['nis'] == '25.26.07.004'
    assert next_identifier_ordinal(YEAR) == 5
    assert next_identifier_ordinal('2026/2027') == 1


def test_numbering_continues_after_transferred_candidates(candidates):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a]}, YEAR)
    transfer_to_roster(YEAR)

    result, assignments = commit_distribution({'7B': [b]}, YEAR)

    assert result.ok
    assert assignments == [(b['id'], '7B', '25.26.07.002')]


def test_identifier_limit_counts_stored_numbers(candidates, make_candidate):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a]}, YEAR)
    filler = [make_candidate(1000 + i, 'L') for i in range(998)]

    with pytest.raises(IdentifierSpaceExhaustedError):
        commit_distribution({'7A': [b], '7B': filler}, YEAR)
    assert database.get_candidate(b['id'])['class_name'] is None


def test_transfer_rolls_back_copy_when_candidate_was_marked_meanwhile(candidates, monkeypatch):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a, b]}, YEAR)

    # Another operator transfers Ahmad after the list was read
    pending = database.get_assigned_candidates()
    database.execute_db("UPDATE candidates SET is_transferred = 1 WHERE id = ?", (a['id'],))
    monkeypatch.setattr(persistence, 'get_assigned_candidates', lambda: pending)

    result = transfer_to_roster(YEAR)

    assert result.succeeded == [b['id']]
    assert result.failed_ids == [a['id']]
    assert 'already transferred' in result.failed[0]['error']
    roster = database.get_all_roster_students()
    assert [s['source_candidate_id'] for s in roster] == [b['id']]


def test_transfer_replay_does_not_duplicate_roster_rows(candidates, monkeypatch):
    a, b = candidates[0], candidates[1]
    commit_distribution({'7A': [a, b]}, YEAR)
    pending = database.get_assigned_candidates()
    assert transfer_to_roster(YEAR).success_count == 2

    monkeypatch.setattr(persistence, 'get_assigned_candidates', lambda: pending)
    replay = transfer_to_roster(YEAR)

    assert replay.success_count == 0
    assert sorted(replay.failed_ids) == sorted([a['id'], b['id']])
    assert len(database.get_all_roster_students()) == 2


def test_update_and_delete_candidate(candidates):
    a, b = candidates[0], candidates[1]

    assert database.update_candidate(a['id'], {'origin_school': 'SDN 9', 'unknown_column': 'x'}) == 1
    assert database.get_candidate(a['id'])['origin_school'] == 'SDN 9'
    assert database.update_candidate(a['id'], {'unknown_column': 'x'}) == 0

    database.execute_db("UPDATE candidates SET is_transferred = 1 WHERE id = ?", (b['id'],))
    assert database.update_candidate(b['id'], {'full_name': 'Changed'}) == 0
    assert database.delete_candidate(b['id']) == 0
    assert database.delete_candidate(a['id']) == 1
    assert database.get_candidate(a['id']) is None
