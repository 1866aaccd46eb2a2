import math
from collections import OrderedDict, deque

from models import (
    Conflict,
    ConflictType,
    GraphEdge,
    GraphNode,
    OperationType,
    PrecedenceGraph
)

LAYOUT_CENTER = (200, 200)
LAYOUT_RADIUS = 150

CONFLICT_TYPES = {
    (OperationType.READ, OperationType.WRITE): ConflictType.READ_WRITE,
    (OperationType.WRITE, OperationType.READ): ConflictType.WRITE_READ,
    (OperationType.WRITE, OperationType.WRITE): ConflictType.WRITE_WRITE,
}


def detect_conflicts(operations):
    """
    Find every ordered pair of conflicting operations.

    Two operations conflict when they belong to different transactions,
    touch the same variable and at least one of them is a write. The earlier
    operation is always op1.
    """
    ordered = sorted(operations, key=lambda op: op.step)
    conflicts = []

    for i, op1 in enumerate(ordered):
        if not op1.variable:
            continue

        for op2 in ordered[i + 1:]:
            if op1.transaction_id == op2.transaction_id or op1.variable != op2.variable:
                continue

            conflict_type = CONFLICT_TYPES.get((op1.type, op2.type))
            if conflict_type:
                conflicts.append(Conflict(op1, op2, conflict_type, op1.variable))

    return conflicts


def layout_nodes(transaction_ids):
    """Place transactions evenly on a circle"""
    nodes = []
    cx, cy = LAYOUT_CENTER
    for index, tid in enumerate(transaction_ids):
        angle = (index / len(transaction_ids)) * 2 * math.pi
        nodes.append(GraphNode(
            id=tid,
            label=tid,
            x=cx + LAYOUT_RADIUS * math.cos(angle),
            y=cy + LAYOUT_RADIUS * math.sin(angle)
        ))
    return nodes


def merge_edges(conflicts):
    """One edge per (source, target) pair, labels joined"""
    edges = OrderedDict()
    for conflict in conflicts:
        key = (conflict.op1.transaction_id, conflict.op2.transaction_id)
        label = f"{conflict.type.value}({conflict.variable})"
        if key in edges:
            edges[key].label += f", {label}"
        else:
            edges[key] = GraphEdge(source=key[0], target=key[1], label=label)
    return list(edges.values())


def find_cycle(nodes, edges):
    """
    Depth-first search for the first cycle reachable in supplied order.

    Returns the list of transaction ids on the cycle (without repeating the
    first one), or an empty list when the graph is acyclic.
    """
    graph = OrderedDict((node, []) for node in nodes)
    for edge in edges:
        graph.setdefault(edge.source, []).append(edge.target)
        graph.setdefault(edge.target, [])

    visited = set()
    rec_stack = set()
    path = []

    def visit(node):
        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        for neighbor in graph[node]:
            if neighbor not in visited:
                cycle = visit(neighbor)
                if cycle:
                    return cycle
            elif neighbor in rec_stack:
                return path[path.index(neighbor):]

        rec_stack.remove(node)
        path.pop()
        return []

    for node in graph:
        if node not in visited:
            cycle = visit(node)
            if cycle:
                return cycle

    return []


def topological_sort(nodes, edges):
    """Serial order equivalent to an acyclic precedence graph"""
    in_degree = OrderedDict((node, 0) for node in nodes)
    graph = {node: [] for node in nodes}

    for edge in edges:
        graph[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque(node for node, degree in in_degree.items() if degree == 0)
    result = []

    while queue:
        node = queue.popleft()
        result.append(node)

        for neighbor in graph[node]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    return result


def build_precedence_graph(transaction_ids, conflicts):
    """Build the precedence graph and decide conflict serializability"""
    transaction_ids = list(transaction_ids)
    for conflict in conflicts:
        for tid in (conflict.op1.transaction_id, conflict.op2.transaction_id):
            if tid not in transaction_ids:
                transaction_ids.append(tid)

    nodes = layout_nodes(transaction_ids)
    edges = merge_edges(conflicts)

    cycle = find_cycle(transaction_ids, edges)
    cycle_keys = set()
    for i, node in enumerate(cycle):
        cycle_keys.add((node, cycle[(i + 1) % len(cycle)]))

    for edge in edges:
        edge.is_cycle_edge = edge.key in cycle_keys

    is_serializable = not cycle
    return PrecedenceGraph(
        nodes=nodes,
        edges=edges,
        is_serializable=is_serializable,
        cycle_edges=[edge for edge in edges if edge.is_cycle_edge],
        serial_order=topological_sort(transaction_ids, edges) if is_serializable else []
    )


def describe_cycle(graph):
    """Short text about the detected cycle, used for the discussion request"""
    if graph.is_serializable:
        return 'No conflict cycle detected.'
    hops = ', '.join(f"{edge.source}->{edge.target}" for edge in graph.cycle_edges)
    return f"Cycle detected involving transactions: {hops}"
