import pytest

from conftest import SCENARIO_A, SCENARIO_B, SCENARIO_C, SCENARIO_D, SCENARIO_E
from lock_manager import LockManager, LockState, advance
from models import Lock, LockType, TransactionStatus, WaitEntry

ACTIVE = TransactionStatus.ACTIVE
BLOCKED = TransactionStatus.BLOCKED
COMMITTED = TransactionStatus.COMMITTED
ABORTED = TransactionStatus.ABORTED


def step_n(manager, n):
    for _ in range(n):
        step = manager.next_step()
    return step


def assert_lock_table_valid(step):
    by_variable = {}
    for lock in step.locks:
        by_variable.setdefault(lock.variable, []).append(lock.type)
    for types in by_variable.values():
        exclusive = types.count(LockType.EXCLUSIVE)
        assert exclusive <= 1
        if exclusive:
            assert types == [LockType.EXCLUSIVE]


def test_initial_snapshot(parse):
    manager = LockManager(parse(SCENARIO_A))
    initial = manager.current_step

    assert len(manager.history) == 1
    assert manager.current_step_index == -1
    assert initial.operation is None
    assert initial.log == ('Initial state.',)
    assert initial.locks == ()
    assert initial.transaction_statuses == {'T1': ACTIVE, 'T2': ACTIVE}
    assert not initial.is_deadlock


def test_scenario_e_deadlock(parse):
    manager = LockManager(parse(SCENARIO_E))

    third = step_n(manager, 3)
    assert not third.is_deadlock

    fourth = manager.next_step()
    waiting = [(e.transaction_id, e.variable, e.lock_type) for e in fourth.waiting_queue]

    assert fourth.is_deadlock
    assert waiting == [('T1', 'B', LockType.SHARED), ('T2', 'A', LockType.SHARED)]
    assert set(fourth.locks) == {
        Lock('T1', 'A', LockType.EXCLUSIVE),
        Lock('T2', 'B', LockType.EXCLUSIVE),
    }
    assert fourth.transaction_statuses == {'T1': BLOCKED, 'T2': BLOCKED}
    assert fourth.log[-1] == 'DEADLOCK DETECTED!'
    assert fourth.operation.original_text == 'R2(A)'


def test_commit_releases_and_wakes_waiter(parse):
    manager = LockManager(parse('W1(X); R2(X); C1; C2'))

    blocked = step_n(manager, 2)
    assert blocked.transaction_statuses['T2'] == BLOCKED
    assert len(blocked.waiting_queue) == 1

    commit = manager.next_step()
    assert commit.locks == (Lock('T2', 'X', LockType.SHARED),)
    assert commit.waiting_queue == ()
    assert commit.transaction_statuses == {'T1': COMMITTED, 'T2': ACTIVE}
    assert commit.log[0] == 'T1 Commits.'
    assert 'T1 released 1 lock(s).' in commit.log

    manager.next_step()
    assert not manager.can_proceed()
    assert manager.current_step.locks == ()


def test_waiting_queue_is_drained_before_next_operation(parse):
    operations = parse('R1(X); W2(X)')
    waiting = WaitEntry('T2', operations[1], 'X', LockType.EXCLUSIVE)
    state = LockState(
        current_step_index=1,
        transaction_statuses={'T1': COMMITTED, 'T2': BLOCKED},
        waiting_queue=[waiting]
    )

    new_state, step = advance(state, operations)

    assert new_state.current_step_index == 1
    assert step.locks == (Lock('T2', 'X', LockType.EXCLUSIVE),)
    assert step.transaction_statuses['T2'] == ACTIVE
    assert step.log[0].startswith('T2 (from waiting queue) acquired X-lock on X')


def test_advance_leaves_input_state_untouched(parse):
    operations = parse(SCENARIO_E)
    initial = LockState.initial(operations)
    expected = initial.copy()

    state = initial
    for _ in range(4):
        snapshot = state.copy()
        next_state, _ = advance(state, operations)
        assert state == snapshot
        state = next_state

    assert initial == expected
    assert state.current_step_index == 3
    assert len(state.waiting_queue) == 2


def test_skips_operations_of_finished_transactions(parse):
    manager = LockManager(parse('R1(X); C1; W1(Y)'))
    step = step_n(manager, 3)

    assert step.log == ('Skipping W1(Y) for T1 (already Committed).',)
    assert step.locks == ()


def test_abort_purges_waiting_entries(parse):
    manager = LockManager(parse('W1(X); W2(X); A2; C1'))

    step_n(manager, 2)
    abort = manager.next_step()

    assert abort.waiting_queue == ()
    assert abort.transaction_statuses == {'T1': ACTIVE, 'T2': ABORTED}
    assert abort.locks == (Lock('T1', 'X', LockType.EXCLUSIVE),)


def test_lock_upgrade(parse):
    manager = LockManager(parse('R1(X); W1(X)'))
    step = step_n(manager, 2)

    assert step.locks == (Lock('T1', 'X', LockType.EXCLUSIVE),)


def test_upgrade_blocked_by_other_reader(parse):
    manager = LockManager(parse('R1(X); R2(X); W1(X)'))
    step = step_n(manager, 3)

    assert step.transaction_statuses['T1'] == BLOCKED
    assert step.waiting_queue[0].lock_type == LockType.EXCLUSIVE
    assert not step.is_deadlock


def test_read_under_own_exclusive_lock(parse):
    manager = LockManager(parse('W1(X); R1(X)'))
    step = step_n(manager, 2)

    assert step.transaction_statuses['T1'] == ACTIVE
    assert step.locks == (Lock('T1', 'X', LockType.EXCLUSIVE),)


def test_stepping_past_the_end(parse):
    manager = LockManager(parse('R1(X); C1'))
    step_n(manager, 2)

    done = manager.next_step()
    assert done.log == ('No more operations in schedule and waiting queue is empty. Simulation complete.',)
    assert manager.current_step_index == 1
    assert done.operation.original_text == 'C1'


def test_reset(parse):
    manager = LockManager(parse(SCENARIO_E))
    step_n(manager, 4)

    manager.reset()
    assert len(manager.history) == 1
    assert manager.current_step_index == -1
    assert manager.current_step.transaction_statuses == {'T1': ACTIVE, 'T2': ACTIVE}

    manager.reset(parse('R3(Z)'))
    assert manager.current_step.transaction_statuses == {'T3': ACTIVE}
    assert manager.next_step().locks == (Lock('T3', 'Z', LockType.SHARED),)


def test_run_to_completion_stops_on_deadlock(parse):
    manager = LockManager(parse(SCENARIO_E))
    steps = manager.run_to_completion()

    assert len(steps) == 4
    assert steps[-1].is_deadlock


def test_run_to_completion_stops_when_stalled(parse):
    manager = LockManager(parse('W1(X); R2(X)'))
    steps = manager.run_to_completion()

    assert len(steps) == 3
    assert steps[-1].log == ('No more operations in schedule. Waiting queue has items that cannot be processed.',)


@pytest.mark.parametrize('schedule', [
    SCENARIO_A, SCENARIO_B, SCENARIO_C, SCENARIO_D, SCENARIO_E,
    'R1(X); R2(X); R3(X); W1(X); C2; C3; C1',
    'W1(X); R1(X); W2(X); R3(X); A1; C2; C3',
])
def test_lock_table_invariant(parse, schedule):
    manager = LockManager(parse(schedule))
    manager.run_to_completion()

    for step in manager.history:
        assert_lock_table_valid(step)
