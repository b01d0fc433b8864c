"""Def-use graph over a program's bindings.

Nodes are statements (``"<event>/<i>/then/<j>"`` paths); an edge ``a -> b``
means statement ``b`` reads a name last bound by ``a`` in an enclosing scope.
"""

from typing import Dict, List, Optional

import networkx as nx

from .ast import Call, Conditional, ProgramAST, Statement, statement_binds, statement_refs


def _resolve(scopes: List[Dict[str, str]], name: str) -> Optional[str]:
    for scope in reversed(scopes):
        if name in scope:
            return scope[name]
    return None


def _walk(graph: nx.DiGraph, block: List[Statement], prefix: str, scopes: List[Dict[str, str]]) -> None:
    for i, stmt in enumerate(block):
        node = f"{prefix}/{i}"
        graph.add_node(
            node,
            statement=stmt,
            binds=statement_binds(stmt),
            captured=isinstance(stmt, Call) and stmt.binding is not None,
            line=stmt.position.line if stmt.position else None,
        )
        for name in statement_refs(stmt):
            source = _resolve(scopes, name)
            if source is not None:
                graph.add_edge(source, node, name=name)
        if isinstance(stmt, Conditional):
            _walk(graph, stmt.then_block, f"{node}/then", scopes + [{}])
            if stmt.else_block is not None:
                _walk(graph, stmt.else_block, f"{node}/else", scopes + [{}])
        binds = statement_binds(stmt)
        if binds:
            scopes[-1][binds] = node


def binding_graph(program: ProgramAST) -> nx.DiGraph:
    graph = nx.DiGraph()
    for trigger in program.triggers:
        _walk(graph, trigger.statements, trigger.event, [{}])
    return graph


def unused_bindings(graph: nx.DiGraph) -> List[str]:
    """Nodes whose ``as`` capture is never read later; in source order."""
    return [
        node for node, data in graph.nodes(data=True)
        if data.get("captured") and graph.out_degree(node) == 0
    ]
