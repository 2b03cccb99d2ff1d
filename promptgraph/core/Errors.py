from typing import List, Optional


class PromptGraphError(Exception):
    """Base class for every recoverable failure raised by promptgraph."""


# --- Resolution errors: blocking for one node's run, fixed by editing the graph ---

class ResolutionError(PromptGraphError, ValueError):
    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class CyclicDependencyError(ResolutionError):
    def __init__(self, path: List[str]):
        self.path = list(path)
        super().__init__(
            "Cyclic dependency: " + " -> ".join(self.path),
            node_id=self.path[0] if self.path else None,
        )


class MissingInputError(ResolutionError):
    pass


class TypeMismatchError(ResolutionError):
    pass


# --- Cache / transport errors: operation aborted, local state untouched ---

class FlowTransportError(PromptGraphError):
    pass


class ArtifactTooLargeError(FlowTransportError):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Flow filesize exceeds {limit // (1024 * 1024)}MB. You can only share flows "
            f"up to {limit // (1024 * 1024)}MB or less. But, don't despair! You can still use "
            "'Export Flow' to share your flow manually as a .cforge file."
        )


class MalformedArtifactError(FlowTransportError, ValueError):
    pass


class TransportError(FlowTransportError):
    pass


class OperationInProgressError(FlowTransportError):
    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            f"A {operation} request is already in progress. "
            f"Wait until the current {operation} finishes before trying again."
        )
