"""Graph navigation: pure functions over a workflow graph.

Connections are keyed by node *name*; only the ``main`` channel drives execution.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..models.core import (
    MAIN_CHANNEL,
    TRIGGER_NODE_TYPES,
    NodeExecutionResult,
    NodeResultStatus,
    NodeSpec,
    ValidationResult,
    WorkflowGraph,
)


def is_trigger_type(node_type: str) -> bool:
    """Check whether a node type starts runs on its own (webhook, cron, ...)."""
    return node_type in TRIGGER_NODE_TYPES


def _main_groups(graph: WorkflowGraph, source_name: str):
    return graph.connections.get(source_name, {}).get(MAIN_CHANNEL, [])


def outgoing_edges(node: NodeSpec, graph: WorkflowGraph) -> List[Tuple[int, str]]:
    """Distinct ``(output_index, target_name)`` pairs leaving a node, in declaration order."""
    edges: List[Tuple[int, str]] = []
    for output_index, group in enumerate(_main_groups(graph, node.name)):
        for target in group:
            edge = (output_index, target.node)
            if edge not in edges:
                edges.append(edge)
    return edges


def find_trigger_nodes(graph: WorkflowGraph) -> List[NodeSpec]:
    """
    Find the nodes a run starts from.

    Args:
        graph: Workflow graph

    Returns:
        Every node whose name never appears as a connection target, in graph order
    """
    targeted = set()
    for channels in graph.connections.values():
        for group in channels.get(MAIN_CHANNEL, []):
            for target in group:
                targeted.add(target.node)
    return [node for node in graph.nodes if node.name not in targeted]


def gather_inputs(
    node: NodeSpec,
    graph: WorkflowGraph,
    node_results: Mapping[str, NodeExecutionResult],
    global_data: Dict[str, Any]
) -> List[Any]:
    """
    Collect a node's input items from predecessors that already produced data.

    Only successful results count, and only through edges on the output group the
    predecessor actually emitted on. Sources are visited in connection order.
    When nothing is gathered and the node is not a trigger type, the run's global
    data becomes the single input.

    Args:
        node: Node about to execute
        graph: Workflow graph
        node_results: Results recorded so far, keyed by node id
        global_data: The run's global data

    Returns:
        List of input items
    """
    inputs: List[Any] = []

    for source_name, channels in graph.connections.items():
        for output_index, group in enumerate(channels.get(MAIN_CHANNEL, [])):
            for target in group:
                if target.node != node.name:
                    continue
                source = graph.get_node_by_name(source_name)
                if source is None:
                    continue
                result = node_results.get(source.id)
                if (
                    result is not None
                    and result.status == NodeResultStatus.SUCCESS
                    and result.output_index == output_index
                    and result.data is not None
                ):
                    inputs.append(result.data)

    if not inputs and not is_trigger_type(node.type):
        inputs.append(dict(global_data))

    return inputs


def next_nodes(node: NodeSpec, graph: WorkflowGraph, output_index: int = 0) -> List[NodeSpec]:
    """
    Resolve the nodes connected to one output group of a node.

    Args:
        node: Source node
        graph: Workflow graph
        output_index: Output group the node emitted on (0 for single-output nodes)

    Returns:
        Target nodes of that group, without duplicates
    """
    groups = _main_groups(graph, node.name)
    if output_index < 0 or output_index >= len(groups):
        return []

    result: List[NodeSpec] = []
    for target in groups[output_index]:
        target_node = graph.get_node_by_name(target.node)
        if target_node is not None and target_node not in result:
            result.append(target_node)
    return result


def successors(node: NodeSpec, graph: WorkflowGraph) -> List[str]:
    """Names of every node reachable over one edge from any output of a node."""
    names: List[str] = []
    for _, target_name in outgoing_edges(node, graph):
        if target_name not in names:
            names.append(target_name)
    return names


def predecessors(node: NodeSpec, graph: WorkflowGraph) -> List[str]:
    """Names of the nodes with an edge into a node."""
    names: List[str] = []
    for source_name, channels in graph.connections.items():
        for group in channels.get(MAIN_CHANNEL, []):
            if any(target.node == node.name for target in group) and source_name not in names:
                names.append(source_name)
    return names


def count_incoming_edges(graph: WorkflowGraph) -> Dict[str, int]:
    """Number of distinct ``(source, output_index)`` edges into each node, keyed by name."""
    counts = {node.name: 0 for node in graph.nodes}
    for node in graph.nodes:
        for _, target_name in outgoing_edges(node, graph):
            counts[target_name] += 1
    return counts


def find_cycle(graph: WorkflowGraph) -> Optional[List[str]]:
    """
    Look for a cycle along ``main`` connections.

    Returns:
        Node names forming the cycle (first name repeated at the end), or None
    """
    adjacency = {node.name: successors(node, graph) for node in graph.nodes}
    visited = set()
    stack: List[str] = []
    on_stack = set()

    def visit(name: str) -> Optional[List[str]]:
        visited.add(name)
        stack.append(name)
        on_stack.add(name)

        for neighbor in adjacency.get(name, []):
            if neighbor in on_stack:
                return stack[stack.index(neighbor):] + [neighbor]
            if neighbor not in visited:
                cycle = visit(neighbor)
                if cycle:
                    return cycle

        stack.pop()
        on_stack.discard(name)
        return None

    for node in graph.nodes:
        if node.name not in visited:
            cycle = visit(node.name)
            if cycle:
                return cycle
    return None


def validate_graph(graph: WorkflowGraph, registry=None) -> ValidationResult:
    """
    Check a graph for problems that would stop a run before it starts.

    Args:
        graph: Workflow graph
        registry: Optional executor registry used to flag unsupported node types

    Returns:
        ValidationResult with errors and warnings
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not find_trigger_nodes(graph):
        errors.append("Workflow has no trigger node (every node has an incoming connection)")

    if registry is not None:
        for node in registry.unsupported_nodes(graph):
            errors.append(f"No executor registered for node type '{node.type}' (node '{node.name}')")

    cycle = find_cycle(graph)
    if cycle:
        errors.append(f"Cycle detected: {' -> '.join(cycle)}")

    if len(graph.nodes) > 1:
        connected = set()
        for source_name, channels in graph.connections.items():
            for group in channels.get(MAIN_CHANNEL, []):
                if group:
                    connected.add(source_name)
                connected.update(target.node for target in group)
        isolated = sorted(node.name for node in graph.nodes if node.name not in connected)
        if isolated:
            warnings.append(f"Isolated nodes detected: {', '.join(isolated)}")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
