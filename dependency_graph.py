#!/usr/bin/env python3
"""Foreign key dependency graph and table load ordering"""
from collections import namedtuple

from generate_mock_data_utils import debug_print, table_key, TableIdentity

LoadOrder = namedtuple("LoadOrder", ["ordered_tables", "cycles", "warnings"])

CYCLE_SUMMARY_WARNING = "Circular dependencies detected. The ordering may not be perfect."


class TableNode(object):
    """One table: the tables it references and the tables referencing it."""

    def __init__(self, schema_name, table_name):
        self.schema_name = schema_name
        self.table_name = table_name
        self.dependencies = set()
        self.dependents = set()
        self.self_referencing = False


class DependencyGraph(object):
    """
    Directed graph of "schema.table" nodes, an edge per foreign key.

    Each node keeps the tables it references (dependencies) and the tables
    referencing it (dependents). A reference from a table to itself is only
    flagged on the node, it never becomes an edge.
    """

    def __init__(self):
        # Insertion ordered: iteration order is the tie-break order
        self.nodes = {}

    def add_table(self, schema, table):
        key = table_key(schema, table)
        if key not in self.nodes:
            self.nodes[key] = TableNode(schema, table)
        return key

    def add_dependency(self, schema, table, referenced_schema, referenced_table):
        """
        Record that schema.table references referenced_schema.referenced_table.

        Returns: True if an edge was added. References to tables that are
        not part of the graph are dropped.
        """
        child = table_key(schema, table)
        parent = table_key(referenced_schema, referenced_table)
        if child not in self.nodes or parent not in self.nodes:
            debug_print("Dropping reference {0} -> {1}: endpoint not in graph".format(child, parent))
            return False
        if child == parent:
            self.nodes[child].self_referencing = True
            return False
        self.nodes[child].dependencies.add(parent)
        self.nodes[parent].dependents.add(child)
        return True

    def is_self_referencing(self, key):
        node = self.nodes.get(key)
        return bool(node and node.self_referencing)

    def _sorted_dependencies(self, key):
        return sorted(self.nodes[key].dependencies)

    def detect_cycles(self):
        """
        Depth-first search over dependency edges with an explicit stack.

        Every edge leading back to a node on the current path yields one
        trace "a -> b -> a". All roots are scanned, so disjoint cycles all
        surface; a node may show up in several traces.

        Returns: list of cycle trace strings
        """
        visited = set()
        on_path = set()
        path = []
        cycles = []

        for root in self.nodes:
            if root in visited:
                continue
            visited.add(root)
            on_path.add(root)
            path.append(root)
            stack = [(root, iter(self._sorted_dependencies(root)))]

            while stack:
                node, deps = stack[-1]
                descended = False
                for dep in deps:
                    if dep in on_path:
                        start = path.index(dep)
                        cycles.append(" -> ".join(path[start:] + [dep]))
                    elif dep not in visited:
                        visited.add(dep)
                        on_path.add(dep)
                        path.append(dep)
                        stack.append((dep, iter(self._sorted_dependencies(dep))))
                        descended = True
                        break
                if not descended:
                    stack.pop()
                    on_path.discard(node)
                    path.pop()

        return cycles

    def order_tables(self):
        """
        Modified Kahn's algorithm emitting tables in waves.

        A wave holds every unordered table whose dependencies are all
        ordered. When no table qualifies, the unordered table with the fewest
        outstanding dependencies is forced out (first in graph order on ties).

        Returns: list of TableIdentity, each table exactly once
        """
        ordered = []
        done = set()

        while len(done) < len(self.nodes):
            wave = [key for key, node in self.nodes.items()
                    if key not in done and all(dep in done for dep in node.dependencies)]

            if not wave:
                remaining = [key for key in self.nodes if key not in done]
                forced = min(remaining, key=lambda k: sum(1 for dep in self.nodes[k].dependencies if dep not in done))
                debug_print("Breaking dependency cycle by ordering {0} first (outstanding: {1})".format(
                    forced, sorted(dep for dep in self.nodes[forced].dependencies if dep not in done)))
                wave = [forced]

            for key in wave:
                node = self.nodes[key]
                ordered.append(TableIdentity(node.schema_name, node.table_name))
                done.add(key)

        return ordered


def build_dependency_graph(tables, dependencies):
    """
    Args:
        tables: iterable of (schema, table) pairs
        dependencies: iterable of (schema, table, referenced_schema, referenced_table)

    Returns: DependencyGraph
    """
    graph = DependencyGraph()
    for schema, table in tables:
        graph.add_table(schema, table)
    for schema, table, ref_schema, ref_table in dependencies:
        graph.add_dependency(schema, table, ref_schema, ref_table)
    return graph


def build_graph_from_details(table_details):
    """Graph over TableDetails using their foreign key references."""
    table_details = list(table_details)
    tables = [(t.schema_name, t.table_name) for t in table_details]
    dependencies = [(t.schema_name, t.table_name, ref.referenced_schema, ref.referenced_table)
                    for t in table_details for ref in t.references]
    return build_dependency_graph(tables, dependencies)


def compute_load_order(graph):
    cycles = graph.detect_cycles()
    warnings = []
    if cycles:
        warnings.append(CYCLE_SUMMARY_WARNING)
        for cycle in cycles:
            warnings.append("Cycle found: {0}".format(cycle))
    return LoadOrder(graph.order_tables(), cycles, warnings)


def get_table_load_order(tables, dependencies):
    """Build the graph, report cycles and order the tables in one step."""
    return compute_load_order(build_dependency_graph(tables, dependencies))
