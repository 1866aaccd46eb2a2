"""
Two-phase locking compliance, cascadelessness and recoverability checks.

Schedules carry no explicit lock/unlock operations, so locks are inferred:
a read takes an S lock, a write an X lock, and commit/abort releases all of
them. When another transaction makes an incompatible access to a variable a
transaction still holds, the holder is taken to have released that lock and
entered its shrinking phase.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from models import (
    LockPhaseEvent,
    LockType,
    Operation,
    OperationType,
    Phase,
    ScheduleAnalysisReport,
    TransactionCompliance
)

logger = logging.getLogger(__name__)


class PhaseTrigger(Enum):
    ACQUIRE = 'acquire'
    TERMINATE = 'terminate'
    INCOMPATIBLE_ACCESS = 'incompatible_access'


@dataclass(frozen=True)
class PhaseSignal:
    """
    One entry of a transaction's lock-phase event stream.

    For ACQUIRE, lock_type is the lock requested by the transaction's own
    access. For INCOMPATIBLE_ACCESS, operation belongs to another transaction
    and lock_type is the lock the analysed transaction was holding.
    """
    trigger: PhaseTrigger
    operation: Operation
    lock_type: Optional[LockType] = None


class LockPhaseMachine:
    """One-way Growing -> Shrinking phase of a single transaction"""

    def __init__(self):
        self.phase = Phase.GROWING
        self.transitions = []

    def shrink(self, signal):
        """Enter the shrinking phase; returns False if already there"""
        if self.phase == Phase.SHRINKING:
            return False
        self.phase = Phase.SHRINKING
        self.transitions.append(signal)
        return True


def is_incompatible(held, requested):
    return held == LockType.EXCLUSIVE or requested == LockType.EXCLUSIVE


def phase_signals(tx_id, operations):
    """Classify the whole schedule into the signals relevant to tx_id"""
    held = {}

    for op in sorted(operations, key=lambda o: o.step):
        if op.transaction_id == tx_id:
            if op.is_access:
                yield PhaseSignal(PhaseTrigger.ACQUIRE, op, op.lock_type)
                if held.get(op.variable) != LockType.EXCLUSIVE:
                    held[op.variable] = op.lock_type
            elif op.is_termination:
                yield PhaseSignal(PhaseTrigger.TERMINATE, op)
                held.clear()
        elif op.is_access and op.variable in held:
            if is_incompatible(held[op.variable], op.lock_type):
                yield PhaseSignal(PhaseTrigger.INCOMPATIBLE_ACCESS, op, held[op.variable])


def analyze_basic_2pl(tx_id, operations, events):
    """Replay tx_id's phase machine; False as soon as a lock is taken while shrinking"""
    machine = LockPhaseMachine()

    for signal in phase_signals(tx_id, operations):
        op = signal.operation

        if signal.trigger == PhaseTrigger.ACQUIRE:
            if machine.phase == Phase.SHRINKING:
                events.append(LockPhaseEvent(
                    op.step, op.original_text,
                    f"Attempt Lock on {op.variable} (FAIL: Shrinking Phase)",
                    Phase.SHRINKING
                ))
                return False
            events.append(LockPhaseEvent(
                op.step, op.original_text,
                f"Acquire {signal.lock_type.value}-Lock({op.variable})",
                Phase.GROWING
            ))

        elif signal.trigger == PhaseTrigger.TERMINATE:
            machine.shrink(signal)
            events.append(LockPhaseEvent(
                op.step, op.original_text,
                f"Release All Locks ({op.type.value})",
                Phase.SHRINKING
            ))

        elif machine.shrink(signal):
            events.append(LockPhaseEvent(
                op.step, f"{op.original_text} (by {op.transaction_id})",
                f"Implied release of lock on {op.variable} by {tx_id} (due to conflict). "
                f"{tx_id} enters shrinking.",
                Phase.GROWING
            ))

    return True


def _mark_event(events, op, note):
    """Append a failure note to the event recorded for op"""
    for event in events:
        if event.step == op.step and event.op_text == op.original_text:
            event.action += note
            return
    events.append(LockPhaseEvent(op.step, op.original_text, note.strip(), Phase.SHRINKING))


def _first_termination(tx_ops):
    return next((op for op in tx_ops if op.is_termination), None)


def _accesses_between(operations, tx_id, variable, start, end):
    """Other transactions' reads/writes on variable strictly between two steps"""
    for op in operations:
        if (start < op.step < end and op.transaction_id != tx_id
                and op.is_access and op.variable == variable):
            yield op


def analyze_strict_2pl(tx_id, operations, tx_ops, is_basic, events):
    """X locks must be held until commit/abort"""
    if not is_basic:
        return False

    writes = [op for op in tx_ops if op.type == OperationType.WRITE]
    termination = _first_termination(tx_ops)

    if termination is None:
        if writes:
            _mark_event(events, tx_ops[-1], f" (Strict 2PL Fail: Writes exist but no C/A by {tx_id})")
            return False
        return True

    for write in writes:
        for other in _accesses_between(operations, tx_id, write.variable, write.step, termination.step):
            _mark_event(
                events, write,
                f" (Strict 2PL Fail: {other.original_text} accessed {write.variable} "
                f"before {tx_id} {termination.type.value})"
            )
            return False

    return True


def analyze_rigorous_2pl(tx_id, operations, tx_ops, is_strict, events):
    """Every lock, S or X, must be held until commit/abort"""
    if not is_strict:
        return False

    accesses = [op for op in tx_ops if op.is_access]
    termination = _first_termination(tx_ops)

    if termination is None:
        if accesses:
            _mark_event(events, tx_ops[-1], f" (Rigorous 2PL Fail: Accesses exist but no C/A by {tx_id})")
            return False
        return True

    for access in accesses:
        for other in _accesses_between(operations, tx_id, access.variable, access.step, termination.step):
            if is_incompatible(access.lock_type, other.lock_type):
                _mark_event(
                    events, access,
                    f" (Rigorous 2PL Fail: {other.original_text} conflict access on "
                    f"{access.variable} before {tx_id} {termination.type.value})"
                )
                return False

    return True


def _termination_steps(operations):
    commits = {}
    aborts = {}
    for op in operations:
        if op.type == OperationType.COMMIT:
            commits.setdefault(op.transaction_id, op.step)
        elif op.type == OperationType.ABORT:
            aborts.setdefault(op.transaction_id, op.step)
    return commits, aborts


def reads_from(operations):
    """Yield (read, writer_tx) for each read preceded by another transaction's write"""
    ordered = sorted(operations, key=lambda o: o.step)
    last_writer = {}

    for op in ordered:
        if op.type == OperationType.READ:
            writers = last_writer.get(op.variable, [])
            foreign = [tid for tid in writers if tid != op.transaction_id]
            if foreign:
                yield op, foreign[-1]
        elif op.type == OperationType.WRITE:
            writers = last_writer.setdefault(op.variable, [])
            if op.transaction_id in writers:
                writers.remove(op.transaction_id)
            writers.append(op.transaction_id)


def check_cascadeless(operations):
    """True when no transaction reads a value written by an uncommitted transaction"""
    commits, aborts = _termination_steps(operations)

    for read, writer in reads_from(operations):
        if writer in aborts and aborts[writer] < read.step:
            continue
        if writer not in commits or commits[writer] >= read.step:
            logger.debug("%s reads %s written by uncommitted %s", read.transaction_id, read.variable, writer)
            return False

    return True


def check_recoverability(operations):
    """
    Check if the schedule is recoverable.
    A schedule is recoverable if no transaction commits before
    all transactions it has read from have committed
    """
    commits, aborts = _termination_steps(operations)

    for read, writer in reads_from(operations):
        if writer in aborts and aborts[writer] < read.step:
            continue
        reader_commit = commits.get(read.transaction_id)
        if reader_commit is None:
            continue
        writer_commit = commits.get(writer)
        if writer_commit is None or writer_commit > reader_commit:
            return False, f"Transaction {read.transaction_id} commits before {writer}"

    return True, 'Schedule is recoverable'


def _no_operations_entry():
    return TransactionCompliance(
        basic_2pl=True,
        strict_2pl=True,
        rigorous_2pl=True,
        conservative_2pl=True,
        lock_phase_events=[LockPhaseEvent(-1, 'No ops', 'N/A', Phase.GROWING)]
    )


def analyze_schedule_for_2pl(operations, transaction_ids=None):
    """Build the 2PL compliance and recoverability report for a schedule"""
    operations = sorted(operations, key=lambda o: o.step)
    if transaction_ids is None:
        transaction_ids = list(dict.fromkeys(op.transaction_id for op in operations))

    ops_by_tx = {}
    for op in operations:
        ops_by_tx.setdefault(op.transaction_id, []).append(op)

    report = ScheduleAnalysisReport()

    for tx_id in transaction_ids:
        tx_ops = ops_by_tx.get(tx_id, [])
        if not tx_ops:
            report.transaction_compliance[tx_id] = _no_operations_entry()
            continue

        compliance = TransactionCompliance()
        events = compliance.lock_phase_events

        compliance.basic_2pl = analyze_basic_2pl(tx_id, operations, events)
        compliance.strict_2pl = analyze_strict_2pl(tx_id, operations, tx_ops, compliance.basic_2pl, events)
        compliance.rigorous_2pl = analyze_rigorous_2pl(tx_id, operations, tx_ops, compliance.strict_2pl, events)
        compliance.conservative_2pl = compliance.basic_2pl

        events.sort(key=lambda event: event.step)
        report.transaction_compliance[tx_id] = compliance

    report.is_cascadeless = check_cascadeless(operations)
    report.is_recoverable, report.recovery_info = check_recoverability(operations)

    logger.debug(
        "2PL analysis: %d transactions, cascadeless=%s, recoverable=%s",
        len(report.transaction_compliance), report.is_cascadeless, report.is_recoverable
    )
    return report
