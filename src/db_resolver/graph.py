"""Relation dependency graph."""
from typing import Any, Dict, List, Optional

import networkx as nx


class DependencyGraph:
    """Tracks which relations a query or view reads from.

    Edges point from a relation to the relations it depends on, so a view
    that selects from ``users`` has the edge ``view -> users``.
    """

    def __init__(self):
        """Initialize an empty graph."""
        self.graph = nx.DiGraph()

    def add_relation(self, name: str, kind: str):
        """Add a node, keeping the kind already recorded for it.

        Args:
            name: Relation name
            kind: "table", "view" or "query"
        """
        if not self.graph.has_node(name):
            self.graph.add_node(name, kind=kind)
        elif self.graph.nodes[name]["kind"] == "query":
            self.graph.nodes[name]["kind"] = kind

    def add_dependency(self, owner: str, target: str, target_kind: str = "table") -> bool:
        """Record that ``owner`` reads from ``target``.

        Args:
            owner: Relation being analysed
            target: Relation referenced in its FROM clause
            target_kind: Node kind for ``target``

        Returns:
            False if the edge would close a cycle; the edge is then not added
        """
        self.add_relation(owner, "query")
        self.add_relation(target, target_kind)
        if owner == target or nx.has_path(self.graph, target, owner):
            return False
        self.graph.add_edge(owner, target)
        return True

    def dependencies(self, name: str) -> List[str]:
        if not self.graph.has_node(name):
            return []
        return sorted(nx.descendants(self.graph, name))

    def base_tables(self, name: str) -> List[str]:
        """Tables reachable from ``name`` through any chain of views."""
        return [n for n in self.dependencies(name) if self.graph.nodes[n]['kind'] == 'table']

    def get_relation_details(self, name: str) -> Optional[Dict[str, Any]]:
        """Get the kind and direct neighbours of a relation.

        Args:
            name: Relation name

        Returns:
            Dictionary with node details, or None if the relation is unknown
        """
        if self.graph.has_node(name):
            return {
                'name': name,
                'kind': self.graph.nodes[name]['kind'],
                'depends_on': sorted(self.graph.successors(name)),
                'used_by': sorted(self.graph.predecessors(name)),
            }
        return None
