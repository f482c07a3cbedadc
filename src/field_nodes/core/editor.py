"""
Raw node form: statement, description and sources.

Signed-out authors get their form autosaved after every change so a reload
does not lose it; seeding requires an account.
"""

from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import settings
from ..models.identity import UserIdentity, format_handle
from ..models.node import (
    ArtifactMetadata,
    Node,
    NodeArtifact,
    NodeDraft,
    NodeOrigin,
    NodeSystemContext,
)
from ..storage.errors import PermissionDeniedError, StorageError, ValidationError
from ..storage.kv import PersistentStore

RAW_NODE_CONTEXT = NodeSystemContext(
    layer="raw",
    description="A foundational thought unit in the Field system",
    instructions="This is a raw node that can be expanded, linked, and refined over time",
)


class NodeEditor:
    def __init__(self, store: PersistentStore, author: Optional[UserIdentity] = None):
        self.store = store
        self.author = author
        self.draft = self._restore() if not self.authenticated else NodeDraft()

    @property
    def authenticated(self) -> bool:
        return self.author is not None and not self.author.is_guest

    # --- autosave ---

    def _restore(self) -> NodeDraft:
        raw = self.store.get(settings.NODE_DRAFT_KEY)
        if not raw:
            return NodeDraft()
        try:
            return NodeDraft.model_validate_json(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Saved node draft is unreadable: {e}") from e

    def _autosave(self) -> None:
        if not self.authenticated:
            self.store.set(settings.NODE_DRAFT_KEY, self.draft.model_dump_json())

    def _clear(self) -> None:
        self.store.delete(settings.NODE_DRAFT_KEY)

    # --- form fields ---

    def set_statement(self, text: str) -> None:
        self.draft.statement = text.strip()
        self._autosave()

    def set_description(self, text: str) -> None:
        self.draft.description = text.strip()
        self._autosave()

    def add_source(self, url: str) -> bool:
        """Adds a trimmed, non-duplicate source. Returns False when nothing was added."""
        url = url.strip()
        if not url or url in self.draft.sources:
            return False
        self.draft.sources.append(url)
        if self.authenticated:
            self.draft.status = "grounded"
        self._autosave()
        return True

    def remove_source(self, index: int) -> str:
        if not 0 <= index < len(self.draft.sources):
            raise ValidationError(f"no source #{index + 1} to remove.")
        removed = self.draft.sources.pop(index)
        if not self.draft.sources:
            self.draft.status = "draft"
        self._autosave()
        return removed

    # --- submit ---

    def seed(self) -> Node:
        """
        Turns the form into an unsaved raw node.

        Raises:
            PermissionDeniedError: the author is not signed in
            ValidationError: the statement is empty
        """
        if not self.authenticated:
            raise PermissionDeniedError("sign in to seed your node.")
        if not self.draft.statement:
            raise ValidationError("a statement is required to seed a node.")

        sources = list(self.draft.sources)
        node = Node(
            title=self.draft.statement,
            thought=self.draft.description,
            origin=NodeOrigin(type="other", description=", ".join(sources) or "No source provided"),
            artifacts=[
                NodeArtifact(type="url", url=s, metadata=ArtifactMetadata(title=s)) for s in sources
            ],
            author=format_handle(self.author.name),
            status=self.draft.status,
            system_context=RAW_NODE_CONTEXT.model_copy(),
        )
        # in-memory form stays intact so a failed save can be retried
        self._clear()
        return node

    def cancel(self) -> None:
        self._clear()
        self.draft = NodeDraft()
