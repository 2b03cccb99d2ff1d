from collections import OrderedDict
from logging import getLogger
from typing import Any, Dict, Iterable, List, Optional

from .Errors import CyclicDependencyError, MissingInputError
from .GraphPrimitives import GraphSnapshot

logger = getLogger(__name__)

# placeholder name -> candidate values, in edge-declaration order
Bindings = Dict[str, List[Any]]


class DependencyResolver:
    """
    Walks incoming edges backward from a node and collects, for every
    placeholder it declares, the values bound to it upstream.

    Works on an immutable GraphSnapshot and never mutates it, so any number
    of resolutions may read the same snapshot.
    """

    def __init__(self, snapshot: GraphSnapshot):
        self.snapshot = snapshot

    def resolve(self, node_id: str, placeholders: Optional[Iterable[str]] = None) -> Bindings:
        node = self.snapshot.get_node(node_id)
        if node is None:
            raise MissingInputError(f"Node '{node_id}' not found", node_id=node_id)

        varnames = list(placeholders) if placeholders is not None else node.vars
        bindings: Bindings = OrderedDict((name, []) for name in varnames)
        self._collect(node_id, varnames, bindings, [node_id])

        logger.debug("resolved %s: %s", node_id, {k: len(v) for k, v in bindings.items()})
        return bindings

    def _collect(self, node_id: str, varnames: List[str], bindings: Bindings, path: List[str]) -> None:
        for varname in varnames:
            values = bindings.setdefault(varname, [])

            for edge in self.snapshot.get_incoming_edges(node_id, varname):
                if edge.source in path:
                    raise CyclicDependencyError(path + [edge.source])

                source = self.snapshot.get_node(edge.source)
                if source is None:
                    raise MissingInputError(
                        f"Node '{node_id}' expects '{varname}' from node '{edge.source}', "
                        "which does not exist",
                        node_id=node_id,
                    )

                # upstream text may itself hold placeholders; resolve those first
                if source.vars:
                    self._collect(edge.source, source.vars, bindings, path + [edge.source])

                values.extend(self.snapshot.get_output(edge.source, edge.source_handle))


def resolve(snapshot: GraphSnapshot, node_id: str, placeholders: Optional[Iterable[str]] = None) -> Bindings:
    return DependencyResolver(snapshot).resolve(node_id, placeholders)
