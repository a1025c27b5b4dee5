import bisect
import dataclasses
from typing import Collection, Dict, Iterable, List

from ..core import NodeBase


@dataclasses.dataclass
class ColumnLayout:
    """Contains information about where each node's local delta is stored in the
    columns of a linear system.

    Unlike the storage layouts used for flattened value vectors, nodes are never
    bucketed by type: columns follow the elimination order they're given in.
    """

    dim: int
    """Total number of columns."""

    column_from_node: Dict[NodeBase, int]
    """Start column of each node."""

    _start_columns: List[int] = dataclasses.field(default_factory=list)
    _nodes: List[NodeBase] = dataclasses.field(default_factory=list)

    def get_nodes(self) -> Collection[NodeBase]:
        """Nodes. Start columns are guaranteed to be in ascending order."""
        # Dictionaries from Python 3.7 retain insertion order
        return self.column_from_node.keys()

    def node_from_column(self, column: int) -> NodeBase:
        """Find the node that a column belongs to."""
        assert 0 <= column < self.dim, f"Column {column} out of range"
        return self._nodes[bisect.bisect_right(self._start_columns, column) - 1]

    def __contains__(self, node: NodeBase) -> bool:
        return node in self.column_from_node

    def __len__(self) -> int:
        return len(self._nodes)

    def append(self, nodes: Iterable[NodeBase]) -> List[NodeBase]:
        """Add columns for new nodes, in order. Nodes that are already laid out are
        skipped; returns the nodes that were actually added."""
        added: List[NodeBase] = []
        for node in nodes:
            if node in self.column_from_node:
                continue
            self.column_from_node[node] = self.dim
            self._start_columns.append(self.dim)
            self._nodes.append(node)
            self.dim += node.get_dim()
            added.append(node)
        return added

    @staticmethod
    def make(nodes: Iterable[NodeBase] = ()) -> "ColumnLayout":
        """Determine column indexing from an ordered list of nodes."""
        layout = ColumnLayout(dim=0, column_from_node={})
        layout.append(nodes)
        return layout
