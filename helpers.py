import logging
import re
from collections import OrderedDict

from tabulate import tabulate

from models import Operation, OperationType, Transaction

logger = logging.getLogger(__name__)

SEPARATOR_PATTERN = re.compile(r'[,;\s]+')
OPERATION_PATTERN = re.compile(r'^([RWCA])(\d+)(?:\(([^)]+)\))?$')


def parse_schedule(content):
    """
    Parse a schedule string such as "R1(X); W2(X), C1 C2" into operations.

    Returns (operations, warnings). Tokens that do not match the grammar are
    dropped and reported in warnings; parsing never stops on a bad token.
    """
    operations = []
    warnings = []

    if not content or not content.strip():
        return operations, warnings

    tokens = [tok for tok in SEPARATOR_PATTERN.split(content.strip()) if tok]

    for token in tokens:
        token = token.upper()
        op, problem = parse_operation(token, len(operations))
        if op is None:
            message = f"Invalid operation '{token}': {problem}"
            logger.warning(message)
            warnings.append(message)
            continue
        operations.append(op)

    return operations, warnings


def parse_operation(token, step):
    """Parse a single upper-cased token; returns (operation, None) or (None, reason)"""
    match = OPERATION_PATTERN.match(token)
    if not match:
        return None, 'expected R/W<n>(VAR) or C/A<n>'

    op_type = OperationType(match.group(1))
    variable = match.group(3)

    if op_type in (OperationType.READ, OperationType.WRITE) and not variable:
        return None, 'read/write needs a variable'
    if op_type in (OperationType.COMMIT, OperationType.ABORT) and variable:
        return None, 'commit/abort takes no variable'

    return Operation(
        id=f"{token}-{step}",
        type=op_type,
        transaction_id=f"T{match.group(2)}",
        original_text=token,
        step=step,
        variable=variable
    ), None


def group_operations_by_transaction(operations):
    """Group operations per transaction, in order of first appearance"""
    grouped = OrderedDict()
    for op in operations:
        if op.transaction_id not in grouped:
            grouped[op.transaction_id] = Transaction(id=op.transaction_id)
        grouped[op.transaction_id].operations.append(op)

    transactions = list(grouped.values())
    for transaction in transactions:
        transaction.summary = summarize_transaction(transaction)
    return transactions


def summarize_transaction(transaction):
    counts = {op_type: 0 for op_type in OperationType}
    for op in transaction.operations:
        if op.transaction_id == transaction.id:
            counts[op.type] += 1

    reads = counts[OperationType.READ]
    writes = counts[OperationType.WRITE]

    parts = []
    if reads:
        parts.append(f"{reads} Read{'s' if reads > 1 else ''}")
    if writes:
        parts.append(f"{writes} Write{'s' if writes > 1 else ''}")

    summary = f"{transaction.id}: "
    summary += ', '.join(parts) if parts else 'No R/W operations'

    if counts[OperationType.COMMIT]:
        summary += ', Commits'
    elif counts[OperationType.ABORT]:
        summary += ', Aborts'
    else:
        summary += '.' if parts else ', No Commit/Abort'

    return summary


def transaction_sort_key(transaction_id):
    return int(transaction_id[1:])


def unique_transaction_ids(operations):
    """Transaction ids present in the schedule, T2 before T10"""
    return sorted({op.transaction_id for op in operations}, key=transaction_sort_key)


def unique_variable_names(operations):
    return sorted({op.variable for op in operations if op.variable})


# Markdown tables for copy/download

def operations_log_to_markdown(operations):
    if not operations:
        return 'No operations to display.'

    rows = [
        [op.step + 1, op.transaction_id, op.type.value, op.variable or 'N/A', f"`{op.original_text}`"]
        for op in operations
    ]
    return tabulate(
        rows,
        headers=['Step', 'Transaction', 'Type', 'Variable', 'Full Operation'],
        tablefmt='pipe',
        colalign=('left',) * 5
    )


def schedule_timeline_to_markdown(operations, transaction_ids):
    if not operations or not transaction_ids:
        return 'No schedule data to display.'

    rows = []
    for index, op in enumerate(operations):
        row = [index + 1]
        for tid in transaction_ids:
            row.append(f"`{op.original_text}`" if op.transaction_id == tid else '')
        rows.append(row)

    return tabulate(
        rows,
        headers=['Step'] + list(transaction_ids),
        tablefmt='pipe',
        colalign=('left',) + ('center',) * len(transaction_ids)
    )


def transaction_summaries_to_markdown(transactions):
    if not transactions:
        return 'No transaction summaries to display.'

    rows = []
    for transaction in transactions:
        ops = '; '.join(f"`{op.original_text}`" for op in transaction.operations) or 'None'
        rows.append([transaction.id, ops, transaction.summary or 'No R/W/C/A operations yet.'])

    return tabulate(
        rows,
        headers=['Transaction ID', 'Operations in Schedule', 'Summary'],
        tablefmt='pipe',
        colalign=('left',) * 3
    )
