import logging
from dataclasses import dataclass, field
from typing import List

from conflict_analyzer import build_precedence_graph, detect_conflicts
from helpers import group_operations_by_transaction, parse_schedule, unique_transaction_ids
from models import Conflict, Operation, PrecedenceGraph, ScheduleAnalysisReport, Transaction
from two_phase_locking import analyze_schedule_for_2pl

logger = logging.getLogger(__name__)


@dataclass
class AnalysisSnapshot:
    """Everything one analysis run produces for a schedule string"""
    schedule: str
    operations: List[Operation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    transactions: List[Transaction] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    precedence_graph: PrecedenceGraph = field(default_factory=PrecedenceGraph)
    two_pl_report: ScheduleAnalysisReport = field(default_factory=ScheduleAnalysisReport)

    @property
    def transaction_ids(self):
        return unique_transaction_ids(self.operations)

    def to_dict(self):
        return {
            'schedule': self.schedule,
            'operations': [op.to_dict() for op in self.operations],
            'warnings': list(self.warnings),
            'transactions': [t.to_dict() for t in self.transactions],
            'conflicts': [c.to_dict() for c in self.conflicts],
            'precedence_graph': self.precedence_graph.to_dict(),
            'two_pl_report': self.two_pl_report.to_dict()
        }


def run_analysis(schedule):
    """Parse a schedule and run every analysis over it"""
    operations, warnings = parse_schedule(schedule)
    transactions = group_operations_by_transaction(operations)
    conflicts = detect_conflicts(operations)

    transaction_ids = unique_transaction_ids(operations)
    graph = build_precedence_graph(transaction_ids, conflicts) if transaction_ids else PrecedenceGraph()
    report = analyze_schedule_for_2pl(operations, [t.id for t in transactions])

    logger.info(
        "Analyzed schedule: %d operations, %d transactions, %d conflicts, serializable=%s",
        len(operations), len(transactions), len(conflicts), graph.is_serializable
    )

    return AnalysisSnapshot(
        schedule=schedule,
        operations=operations,
        warnings=warnings,
        transactions=transactions,
        conflicts=conflicts,
        precedence_graph=graph,
        two_pl_report=report
    )
