"""
Error types shared by the storage layer and the terminal.

Storage failures and missing records are kept apart so callers can tell
"could not reach the store" from "no such node".
"""


class FieldNodesError(Exception):
    """Base class for all Field Nodes errors."""


class StorageError(FieldNodesError):
    """Persistence failed: serialization, quota, file or network error."""


class NodeNotFoundError(FieldNodesError):
    """The requested node id does not exist."""

    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' not found")
        self.node_id = node_id


class ValidationError(FieldNodesError):
    """User input did not meet a length or format requirement."""


class PermissionDeniedError(FieldNodesError):
    """The current identity may not perform a write action."""

    def __init__(self, message: str, remedy: str = "type /login to create an account."):
        super().__init__(message)
        self.remedy = remedy
