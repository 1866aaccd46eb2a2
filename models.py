from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class OperationType(Enum):
    READ = 'R'
    WRITE = 'W'
    COMMIT = 'C'
    ABORT = 'A'


class ConflictType(Enum):
    READ_WRITE = 'RW'
    WRITE_READ = 'WR'
    WRITE_WRITE = 'WW'


class LockType(Enum):
    SHARED = 'S'
    EXCLUSIVE = 'X'


class TransactionStatus(Enum):
    ACTIVE = 'Active'
    BLOCKED = 'Blocked'
    COMMITTED = 'Committed'
    ABORTED = 'Aborted'


class Phase(Enum):
    GROWING = 'Growing'
    SHRINKING = 'Shrinking'


@dataclass(frozen=True)
class Operation:
    """A single parsed schedule operation, e.g. R1(X) at step 0"""
    id: str
    type: OperationType
    transaction_id: str
    original_text: str
    step: int
    variable: Optional[str] = None

    @property
    def is_access(self):
        return self.type in (OperationType.READ, OperationType.WRITE)

    @property
    def is_termination(self):
        return self.type in (OperationType.COMMIT, OperationType.ABORT)

    @property
    def lock_type(self):
        """Lock needed by a read/write: S for reads, X for writes"""
        if self.type == OperationType.WRITE:
            return LockType.EXCLUSIVE
        if self.type == OperationType.READ:
            return LockType.SHARED
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type.value,
            'transaction_id': self.transaction_id,
            'variable': self.variable,
            'original_text': self.original_text,
            'step': self.step
        }


@dataclass
class Transaction:
    id: str
    operations: List[Operation] = field(default_factory=list)
    summary: str = ''

    def to_dict(self):
        return {
            'id': self.id,
            'operations': [op.to_dict() for op in self.operations],
            'summary': self.summary
        }


@dataclass(frozen=True)
class Conflict:
    op1: Operation
    op2: Operation
    type: ConflictType
    variable: str

    def to_dict(self):
        return {
            'op1': self.op1.to_dict(),
            'op2': self.op2.to_dict(),
            'type': self.type.value,
            'variable': self.variable
        }


@dataclass
class GraphNode:
    id: str
    label: str
    x: float
    y: float

    def to_dict(self):
        return {'id': self.id, 'label': self.label, 'x': self.x, 'y': self.y}


@dataclass
class GraphEdge:
    source: str
    target: str
    label: str
    is_cycle_edge: bool = False

    @property
    def key(self):
        return (self.source, self.target)

    def to_dict(self):
        return {
            'source': self.source,
            'target': self.target,
            'label': self.label,
            'is_cycle_edge': self.is_cycle_edge
        }


@dataclass
class PrecedenceGraph:
    nodes: List[GraphNode] = field(default_factory=list)
    edges: List[GraphEdge] = field(default_factory=list)
    is_serializable: bool = True
    cycle_edges: List[GraphEdge] = field(default_factory=list)
    serial_order: List[str] = field(default_factory=list)

    def to_dict(self):
        return {
            'nodes': [node.to_dict() for node in self.nodes],
            'edges': [edge.to_dict() for edge in self.edges],
            'is_serializable': self.is_serializable,
            'cycle_edges': [edge.to_dict() for edge in self.cycle_edges],
            'serial_order': list(self.serial_order)
        }


@dataclass(frozen=True)
class Lock:
    transaction_id: str
    variable: str
    type: LockType

    def to_dict(self):
        return {
            'transaction_id': self.transaction_id,
            'variable': self.variable,
            'type': self.type.value
        }


@dataclass(frozen=True)
class WaitEntry:
    """A lock request blocked behind an incompatible lock"""
    transaction_id: str
    operation: Operation
    variable: str
    lock_type: LockType

    def to_dict(self):
        return {
            'transaction_id': self.transaction_id,
            'operation': self.operation.to_dict(),
            'variable': self.variable,
            'lock_type': self.lock_type.value
        }


@dataclass(frozen=True)
class SimulationStep:
    """Snapshot of the lock manager after one step"""
    operation: Optional[Operation]
    locks: Tuple[Lock, ...]
    transaction_statuses: Dict[str, TransactionStatus]
    waiting_queue: Tuple[WaitEntry, ...]
    log: Tuple[str, ...]
    is_deadlock: bool = False

    def to_dict(self):
        return {
            'operation': self.operation.to_dict() if self.operation else None,
            'locks': [lock.to_dict() for lock in self.locks],
            'transaction_statuses': {
                tid: status.value for tid, status in self.transaction_statuses.items()
            },
            'waiting_queue': [entry.to_dict() for entry in self.waiting_queue],
            'log': list(self.log),
            'is_deadlock': self.is_deadlock
        }


@dataclass
class LockPhaseEvent:
    step: int
    op_text: str
    action: str
    phase: Phase

    def to_dict(self):
        return {
            'step': self.step,
            'op_text': self.op_text,
            'action': self.action,
            'phase': self.phase.value
        }


@dataclass
class TransactionCompliance:
    basic_2pl: bool = False
    strict_2pl: bool = False
    rigorous_2pl: bool = False
    # Same as basic_2pl: pre-claimed locks leave no trace in a schedule
    conservative_2pl: bool = False
    lock_phase_events: List[LockPhaseEvent] = field(default_factory=list)

    def to_dict(self):
        return {
            'basic_2pl': self.basic_2pl,
            'strict_2pl': self.strict_2pl,
            'rigorous_2pl': self.rigorous_2pl,
            'conservative_2pl': self.conservative_2pl,
            'lock_phase_events': [event.to_dict() for event in self.lock_phase_events]
        }


@dataclass
class ScheduleAnalysisReport:
    transaction_compliance: Dict[str, TransactionCompliance] = field(default_factory=dict)
    is_cascadeless: bool = True
    is_recoverable: bool = True
    recovery_info: str = 'Schedule is recoverable'

    @property
    def allows_cascading_aborts(self):
        return not self.is_cascadeless

    def to_dict(self):
        return {
            'transaction_compliance': {
                tid: compliance.to_dict()
                for tid, compliance in self.transaction_compliance.items()
            },
            'is_cascadeless': self.is_cascadeless,
            'allows_cascading_aborts': self.allows_cascading_aborts,
            'is_recoverable': self.is_recoverable,
            'recovery_info': self.recovery_info
        }
