"""
Part of dotnetinvoker

Call graph construction from decoded method bodies. Nothing is executed: only bytecode and metadata are read.
"""

import logging
from collections import deque
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .logger import get_logger
from .model import Type, Struct
from .constants import CALL_OPCODES, DEFAULT_SUBGRAPH_DEPTH


class CallGraph(object):
    def __init__(self):
        self.nodes: Dict[str, Struct.CallGraphNode] = {}
        self.edges: List[Struct.CallGraphEdge] = []
        self._edge_keys: Set[Tuple[str, str, Type.CallKind]] = set()

    def add_node(self, method: Struct.MethodDescriptor, is_external: bool = False) -> Struct.CallGraphNode:
        node = self.nodes.get(method.id)
        if node is None:
            node = Struct.CallGraphNode(method.id, method.display_name, is_external)
            self.nodes[method.id] = node

        return node

    def add_edge(self, from_id: str, to_id: str, call_kind: Type.CallKind) -> Optional[Struct.CallGraphEdge]:
        """
        Add an edge between two existing nodes. Returns None if the same edge is already present.
        """
        if from_id not in self.nodes or to_id not in self.nodes:
            raise ValueError(f'Edge {from_id} -> {to_id} references a node missing from the graph')

        key = (from_id, to_id, call_kind)
        if key in self._edge_keys:
            return None

        edge = Struct.CallGraphEdge(from_id, to_id, call_kind)
        self._edge_keys.add(key)
        self.edges.append(edge)

        return edge

    def callees(self, node_id: str) -> List[str]:
        return [edge.to_id for edge in self.edges if edge.from_id == node_id]

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def as_dict(self) -> Dict:
        return {
            'nodes': [
                {'id': node.id, 'display_name': node.display_name, 'is_external': node.is_external}
                for node in self.nodes.values()
            ],
            'edges': [
                {'from': edge.from_id, 'to': edge.to_id, 'kind': edge.call_kind.value}
                for edge in self.edges
            ]
        }


class CallGraphBuilder(object):
    """
    Builds call graphs over a loader exposing name, methods() and decode_method(method),
    as DotNetAssembly does.
    """
    def __init__(self, loader, log_level: int = logging.INFO):
        self.loader = loader
        self.logger = get_logger('callgraph_logger', level=log_level)

    def calls(self, method: Struct.MethodDescriptor) -> Iterator[Tuple[Struct.MethodDescriptor, Type.CallKind]]:
        """
        Call, virtual call and construct targets of a method, in bytecode order.
        """
        decoded = self.loader.decode_method(method)
        if decoded is None:
            return

        if decoded.truncated:
            self.logger.debug(f'{method.id} has a truncated body')

        for instruction in decoded:
            call_kind = CALL_OPCODES.get(instruction.opcode.value)
            if call_kind is not None and isinstance(instruction.operand, Struct.MethodDescriptor):
                yield instruction.operand, Type.CallKind(call_kind)

    def is_local(self, method: Struct.MethodDescriptor) -> bool:
        return method.assembly == self.loader.name

    def build_assembly_graph(self) -> CallGraph:
        """
        Graph of every method in the assembly. Calls leaving the assembly are not part of it.
        """
        graph = CallGraph()
        methods = self.loader.methods()

        for method in methods:
            graph.add_node(method)

        for method in methods:
            for target, call_kind in self.calls(method):
                if not self.is_local(target):
                    continue
                graph.add_node(target)
                graph.add_edge(method.id, target.id, call_kind)

        self.logger.debug(f'assembly graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges')
        return graph

    def build_subgraph(self, root: Struct.MethodDescriptor, max_depth: int = DEFAULT_SUBGRAPH_DEPTH) -> CallGraph:
        """
        Breadth-first graph rooted at one method. Methods are expanded only while closer than max_depth to the
        root; targets in other assemblies are included and marked external.
        """
        graph = CallGraph()
        graph.add_node(root, is_external=not self.is_local(root))

        visited = {root.id}
        queue = deque([(root, 0)])

        while queue:
            method, depth = queue.popleft()
            if depth >= max_depth:
                continue

            for target, call_kind in self.calls(method):
                graph.add_node(target, is_external=not self.is_local(target))
                graph.add_edge(method.id, target.id, call_kind)

                if target.id not in visited:
                    visited.add(target.id)
                    queue.append((target, depth + 1))

        self.logger.debug(f'subgraph of {root.id}: {len(graph.nodes)} nodes, {len(graph.edges)} edges')
        return graph
