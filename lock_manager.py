"""
Step-by-step strict 2PL lock manager simulation.

`advance` is a pure step function over `LockState`; `LockManager` drives it
and keeps the history of snapshots for the web layer.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from models import (
    Lock,
    LockType,
    OperationType,
    SimulationStep,
    TransactionStatus,
    WaitEntry
)

logger = logging.getLogger(__name__)

FINISHED = (TransactionStatus.COMMITTED, TransactionStatus.ABORTED)


@dataclass
class LockState:
    current_step_index: int = -1
    locks: List[Lock] = field(default_factory=list)
    transaction_statuses: Dict[str, TransactionStatus] = field(default_factory=dict)
    waiting_queue: List[WaitEntry] = field(default_factory=list)

    @classmethod
    def initial(cls, operations):
        tids = dict.fromkeys(op.transaction_id for op in operations)
        return cls(transaction_statuses={tid: TransactionStatus.ACTIVE for tid in tids})

    def copy(self):
        return LockState(
            current_step_index=self.current_step_index,
            locks=list(self.locks),
            transaction_statuses=dict(self.transaction_statuses),
            waiting_queue=list(self.waiting_queue)
        )

    def snapshot(self, operation, log, is_deadlock=False):
        return SimulationStep(
            operation=operation,
            locks=tuple(self.locks),
            transaction_statuses=dict(self.transaction_statuses),
            waiting_queue=tuple(self.waiting_queue),
            log=tuple(log),
            is_deadlock=is_deadlock
        )


def can_acquire(locks, tid, variable, lock_type):
    """Lock compatibility check against the current lock table"""
    existing = [lock for lock in locks if lock.variable == variable]
    if not existing:
        return True

    if lock_type == LockType.SHARED:
        if any(lock.transaction_id == tid and lock.type == LockType.EXCLUSIVE for lock in existing):
            return True
        return all(lock.type == LockType.SHARED for lock in existing)

    return all(lock.transaction_id == tid for lock in existing)


def grant(state, tid, variable, lock_type):
    own = [lock for lock in state.locks if lock.transaction_id == tid and lock.variable == variable]

    if lock_type == LockType.SHARED and any(lock.type == LockType.EXCLUSIVE for lock in own):
        return
    if lock_type == LockType.EXCLUSIVE:
        # upgrade: the X lock replaces our own S lock
        state.locks = [
            lock for lock in state.locks
            if not (lock.transaction_id == tid and lock.variable == variable
                    and lock.type == LockType.SHARED)
        ]

    new_lock = Lock(tid, variable, lock_type)
    if new_lock not in state.locks:
        state.locks.append(new_lock)


def drain_waiting_queue(state, log):
    """Grant every waiting request that has become compatible; True if any was"""
    granted_any = False
    remaining = []

    for entry in state.waiting_queue:
        if can_acquire(state.locks, entry.transaction_id, entry.variable, entry.lock_type):
            grant(state, entry.transaction_id, entry.variable, entry.lock_type)
            state.transaction_statuses[entry.transaction_id] = TransactionStatus.ACTIVE
            log.append(
                f"{entry.transaction_id} (from waiting queue) acquired {entry.lock_type.value}-lock "
                f"on {entry.variable} for {entry.operation.original_text}."
            )
            log.append(f"{entry.transaction_id} is now Active.")
            granted_any = True
        else:
            remaining.append(entry)

    state.waiting_queue = remaining
    return granted_any


def request_lock(state, op, log):
    tid = op.transaction_id
    lock_type = op.lock_type

    if can_acquire(state.locks, tid, op.variable, lock_type):
        grant(state, tid, op.variable, lock_type)
        log.append(f"{tid} acquired {lock_type.value}-lock on {op.variable} for {op.original_text}.")
        if state.transaction_statuses.get(tid) == TransactionStatus.BLOCKED:
            state.transaction_statuses[tid] = TransactionStatus.ACTIVE
            log.append(f"{tid} is now Active.")
        return

    log.append(
        f"{tid} cannot acquire {lock_type.value}-lock on {op.variable} for {op.original_text}. "
        f"Added to waiting queue."
    )
    state.transaction_statuses[tid] = TransactionStatus.BLOCKED
    if not any(entry.operation.id == op.id for entry in state.waiting_queue):
        state.waiting_queue.append(WaitEntry(tid, op, op.variable, lock_type))


def release_locks(state, tid, log):
    released = [lock for lock in state.locks if lock.transaction_id == tid]
    state.locks = [lock for lock in state.locks if lock.transaction_id != tid]
    if released:
        log.append(f"{tid} released {len(released)} lock(s).")
    drain_waiting_queue(state, log)


def finish_transaction(state, op, log):
    """Commit or abort: drop pending requests, release locks, wake waiters"""
    tid = op.transaction_id
    committed = op.type == OperationType.COMMIT
    log.append(f"{tid} {'Commits' if committed else 'Aborts'}.")

    state.waiting_queue = [entry for entry in state.waiting_queue if entry.transaction_id != tid]
    release_locks(state, tid, log)
    state.transaction_statuses[tid] = TransactionStatus.COMMITTED if committed else TransactionStatus.ABORTED


def process_operation(state, op, log):
    if op.is_access:
        request_lock(state, op, log)
    elif op.is_termination:
        finish_transaction(state, op, log)


def detect_deadlock(state, log):
    """
    Detect two transactions each waiting for a lock the other holds.

    Longer wait-for cycles (T1 -> T2 -> T3 -> T1) are not detected.
    """
    queue = state.waiting_queue
    if len(queue) < 2:
        return False

    def blocks(holder, entry):
        return any(
            lock.variable == entry.variable and lock.transaction_id == holder
            and (lock.type == LockType.EXCLUSIVE or entry.lock_type == LockType.EXCLUSIVE)
            for lock in state.locks
        )

    for first in queue:
        for second in queue:
            if first.transaction_id == second.transaction_id:
                continue
            if blocks(second.transaction_id, first) and blocks(first.transaction_id, second):
                log.append(
                    f"Potential deadlock: {first.transaction_id} needs {first.variable} "
                    f"(held by {second.transaction_id}), and {second.transaction_id} needs "
                    f"{second.variable} (held by {first.transaction_id})."
                )
                return True

    return False


def advance(state, operations):
    """
    Compute one simulation step.

    Returns (new_state, SimulationStep); the given state is left untouched.
    A step either grants waiting requests or processes the next operation.
    """
    state = state.copy()
    log = []

    if not drain_waiting_queue(state, log):
        if state.current_step_index < len(operations) - 1:
            state.current_step_index += 1
            op = operations[state.current_step_index]
            status = state.transaction_statuses.get(op.transaction_id)

            if status in FINISHED:
                log.append(f"Skipping {op.original_text} for {op.transaction_id} (already {status.value}).")
            else:
                process_operation(state, op, log)
        elif state.waiting_queue:
            log.append('No more operations in schedule. Waiting queue has items that cannot be processed.')
        else:
            log.append('No more operations in schedule and waiting queue is empty. Simulation complete.')

    is_deadlock = detect_deadlock(state, log)
    if is_deadlock:
        log.append('DEADLOCK DETECTED!')
        logger.info("Deadlock detected at step %d", state.current_step_index)

    operation = operations[state.current_step_index] if state.current_step_index >= 0 else None
    return state, state.snapshot(operation, log, is_deadlock)


class LockManager:
    """Steps a fixed operation sequence through the lock table, keeping every snapshot"""

    def __init__(self, operations):
        self.operations = list(operations)
        self.reset()

    def reset(self, operations=None):
        """Back to the initial state, optionally with a new schedule"""
        if operations is not None:
            self.operations = list(operations)
        self.state = LockState.initial(self.operations)
        self.history = [self.state.snapshot(None, ['Initial state.'])]

    @property
    def current_step(self):
        return self.history[-1]

    @property
    def current_step_index(self):
        return self.state.current_step_index

    def can_proceed(self):
        return self.state.current_step_index < len(self.operations) - 1 or bool(self.state.waiting_queue)

    def next_step(self):
        self.state, step = advance(self.state, self.operations)
        self.history.append(step)
        return step

    def run_to_completion(self):
        """Step until the schedule is exhausted, a deadlock shows up or nothing moves"""
        steps = []
        while self.can_proceed() and not self.current_step.is_deadlock:
            before = self.state
            steps.append(self.next_step())
            if self.state == before:
                break
        return steps
