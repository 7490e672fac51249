"""Property tests for milestone lifecycle invariants."""
from datetime import timedelta
from typing import List

from hypothesis import given
from hypothesis import strategies as st

from conftest import NOW, make_milestone
from shift_journey.lifecycle import (
    TERMINAL_STATUSES,
    break_promise,
    complete,
    find_locked,
    lock,
    move,
    renumber,
    validate_transition,
)
from shift_journey.models import (
    InvariantViolation,
    Milestone,
    MilestoneStatus,
    TemporalViolation,
)

actions = st.sampled_from(["lock", "complete", "break"])


@given(steps=st.lists(actions, max_size=12))
def test_terminal_status_never_changes(steps: List[str]) -> None:
    milestone = make_milestone()
    deadline = NOW + timedelta(days=1)
    resolved_as = None
    for step in steps:
        try:
            if step == "lock":
                milestone = lock(milestone, "Run", deadline, None, NOW)
            elif step == "complete":
                milestone = complete(milestone, NOW)
            else:
                milestone = break_promise(milestone, "Tired", NOW)
        except (InvariantViolation, TemporalViolation):
            pass
        if resolved_as is not None:
            assert milestone.status is resolved_as
        elif milestone.status in TERMINAL_STATUSES:
            resolved_as = milestone.status


@given(source=st.sampled_from(list(MilestoneStatus)), target=st.sampled_from(list(MilestoneStatus)))
def test_validate_transition_never_raises(source: MilestoneStatus, target: MilestoneStatus) -> None:
    result = validate_transition(source, target)
    assert result.valid == (len(result.violations) == 0)


@given(numbers=st.lists(st.integers(min_value=1, max_value=500), min_size=1, max_size=15, unique=True))
def test_renumber_is_dense_and_order_preserving(numbers: List[int]) -> None:
    milestones = [make_milestone(number=n, title=f"M{n}") for n in numbers]
    renumbered = renumber(milestones)
    assert [m.number for m in renumbered] == list(range(1, len(numbers) + 1))
    assert [m.title for m in renumbered] == [f"M{n}" for n in sorted(numbers)]


@given(size=st.integers(min_value=1, max_value=10), data=st.data())
def test_move_keeps_members_and_density(size: int, data: st.DataObject) -> None:
    milestones = [make_milestone(number=n, title=f"M{n}") for n in range(1, size + 1)]
    source = data.draw(st.integers(min_value=0, max_value=size - 1))
    target = data.draw(st.integers(min_value=0, max_value=size - 1))
    moved = move(milestones, milestones[source].milestone_id, target)
    assert sorted(m.milestone_id for m in moved) == sorted(m.milestone_id for m in milestones)
    assert [m.number for m in moved] == list(range(1, size + 1))
    assert moved[target].milestone_id == milestones[source].milestone_id


@given(locked_index=st.integers(min_value=0, max_value=4), target_index=st.integers(min_value=0, max_value=4))
def test_at_most_one_locked(locked_index: int, target_index: int) -> None:
    milestones: List[Milestone] = [make_milestone(number=n + 1) for n in range(5)]
    deadline = NOW + timedelta(hours=3)
    milestones[locked_index] = lock(milestones[locked_index], "Run", deadline, None, NOW)
    try:
        milestones[target_index] = lock(
            milestones[target_index], "Run", deadline, None, NOW, siblings=milestones
        )
    except InvariantViolation:
        pass
    assert find_locked(milestones) is not None
    assert sum(1 for m in milestones if m.status is MilestoneStatus.LOCKED) == 1
