import copy

import pytest

from distribution_editor import (
    DistributionHistory, move_candidate, remove_candidate, add_candidate,
    swap_candidates, list_assigned_candidates, find_candidate_class,
)
from models import StaleDistributionError, SwapRefusedError, UnknownClassError


@pytest.fixture
def distribution(make_candidate):
    return {
        '7A': [make_candidate(1, 'L'), make_candidate(2, 'P')],
        '7B': [make_candidate(3, 'L'), make_candidate(4, 'P')],
        '7C': [make_candidate(5, 'L')],
    }


def _ids(students):
    return [s['id'] for s in students]


def _total(distribution):
    return sum(len(students) for students in distribution.values())


def _assert_unique(distribution):
    ids = [s['id'] for students in distribution.values() for s in students]
    assert len(ids) == len(set(ids))


def test_move_candidate_appends_to_destination(distribution):
    snapshot = copy.deepcopy(distribution)
    moved = move_candidate(distribution, 1, '7A', '7C')

    assert _ids(moved['7A']) == [2]
    assert _ids(moved['7C']) == [5, 1]
    assert _total(moved) == _total(distribution)
    _assert_unique(moved)
    assert distribution == snapshot


def test_move_to_same_class_is_a_no_op(distribution):
    assert move_candidate(distribution, 1, '7A', '7A') is distribution


def test_move_rejects_stale_source(distribution):
    with pytest.raises(StaleDistributionError):
        move_candidate(distribution, 3, '7A', '7C')


def test_move_rejects_unknown_destination(distribution):
    with pytest.raises(UnknownClassError):
        move_candidate(distribution, 1, '7A', '7Z')


def test_remove_candidate_drops_one(distribution):
    removed = remove_candidate(distribution, 4, '7B')

    assert _ids(removed['7B']) == [3]
    assert _total(removed) == _total(distribution) - 1
    assert find_candidate_class(removed, 4) is None
    assert _ids(distribution['7B']) == [3, 4]


def test_remove_rejects_stale_reference(distribution):
    with pytest.raises(StaleDistributionError):
        remove_candidate(distribution, 4, '7A')


def test_add_candidate_moves_from_other_class(distribution):
    candidate = distribution['7B'][0]
    added = add_candidate(distribution, candidate, '7A')

    assert _ids(added['7A']) == [1, 2, 3]
    assert _ids(added['7B']) == [4]
    assert _total(added) == _total(distribution)
    _assert_unique(added)


def test_add_unplaced_candidate(distribution, make_candidate):
    added = add_candidate(distribution, make_candidate(9, 'P'), '7C')
    assert _ids(added['7C']) == [5, 9]
    assert _total(added) == _total(distribution) + 1


def test_add_to_current_class_is_a_no_op(distribution):
    assert add_candidate(distribution, distribution['7A'][0], '7A') is distribution


def test_add_rejects_unknown_class(distribution, make_candidate):
    with pytest.raises(UnknownClassError):
        add_candidate(distribution, make_candidate(9, 'P'), '8A')


def test_swap_candidates(distribution):
    snapshot = copy.deepcopy(distribution)
    swapped = swap_candidates(distribution, 1, '7A', 5, '7C')

    assert _ids(swapped['7A']) == [2, 5]
    assert _ids(swapped['7C']) == [1]
    assert _total(swapped) == _total(distribution)
    _assert_unique(swapped)
    assert distribution == snapshot


def test_swap_refuses_same_class(distribution):
    with pytest.raises(SwapRefusedError):
        swap_candidates(distribution, 1, '7A', 2, '7A')


def test_swap_refuses_stale_reference(distribution):
    with pytest.raises(StaleDistributionError):
        swap_candidates(distribution, 1, '7B', 5, '7C')
    with pytest.raises(StaleDistributionError):
        swap_candidates(distribution, 1, '7A', 5, '7B')


def test_list_assigned_candidates(distribution):
    assigned = list_assigned_candidates(distribution)
    assert len(assigned) == 5
    assert assigned[0]['class_name'] == '7A'
    assert assigned[-1]['unique_id'] == '7C-5'


def test_history_undo_redo(distribution):
    history = DistributionHistory(distribution)
    assert not history.can_undo

    moved = move_candidate(history.current, 1, '7A', '7B')
    history.push(moved)
    assert history.can_undo
    assert not history.can_redo

    assert _ids(history.undo()['7A']) == [1, 2]
    assert history.can_redo
    assert _ids(history.redo()['7B']) == [3, 4, 1]
    assert history.redo() is None


def test_history_push_after_undo_discards_redo(distribution):
    history = DistributionHistory(distribution)
    history.push(move_candidate(distribution, 1, '7A', '7B'))
    history.undo()

    history.push(remove_candidate(distribution, 5, '7C'))
    assert len(history) == 2
    assert not history.can_redo
    assert history.current['7C'] == []


def test_history_snapshots_are_isolated(distribution):
    history = DistributionHistory(distribution)
    distribution['7A'].clear()

    current = history.current
    current['7B'].clear()
    assert _ids(history.current['7A']) == [1, 2]
    assert _ids(history.current['7B']) == [3, 4]


def test_empty_history():
    history = DistributionHistory()
    assert history.current is None
    assert history.undo() is None
