"""
Data models for Field Nodes
"""

from pydantic import BaseModel, Field as PydanticField
from typing import List, Optional, Dict, Literal
from datetime import datetime, timezone

NodeType = Literal["RN", "CN", "SN", "RF", "SY"]
NodeStatus = Literal["draft", "grounded", "reviewed", "canonical", "needs_revision"]
ArtifactType = Literal["url", "video", "image", "pdf", "screenshot"]
OriginType = Literal["tiktok", "youtube", "article", "lecture", "other"]
TrustLevel = Literal["contributor", "reviewer", "editor"]
SortBy = Literal["recent", "connections", "title", "status"]
SortOrder = Literal["asc", "desc"]
MembershipRole = Literal["viewer", "contributor", "editor", "steward"]

NODE_TYPES: List[str] = ["RN", "CN", "SN", "RF", "SY"]
NODE_STATUSES: List[str] = ["draft", "grounded", "reviewed", "canonical", "needs_revision"]
MEMBERSHIP_ROLES: List[str] = ["viewer", "contributor", "editor", "steward"]

NODE_TYPE_INFO: Dict[str, Dict[str, str]] = {
    "RN": {"name": "Raw Node", "description": "Foundational thought / observation (atomic)"},
    "CN": {"name": "Context Node", "description": "Expands or annotates a raw node"},
    "SN": {"name": "Support Node", "description": "External materials (citations, links, evidence)"},
    "RF": {"name": "Reflection Node", "description": "Reflective or meta-analysis note"},
    "SY": {"name": "System Node", "description": "Internal structure (rules, templates, system definitions)"},
}


def utc_now() -> str:
    """ISO timestamp used for every created/updated/tended stamp."""
    return datetime.now(timezone.utc).isoformat()


class ArtifactMetadata(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    transcript: Optional[str] = None
    extracted_text: Optional[str] = None
    duration: Optional[float] = None  # videos
    page_count: Optional[int] = None  # PDFs


class NodeArtifact(BaseModel):
    """A piece of evidence attached to a node."""
    type: ArtifactType = "url"
    url: str
    thumbnail: Optional[str] = None
    metadata: Optional[ArtifactMetadata] = None


class NodeOrigin(BaseModel):
    """Where an idea came from, e.g. 'feminist systems lecture, 10/2025'."""
    type: OriginType = "other"
    description: str = ""


class ReviewMetadata(BaseModel):
    reviewer_id: Optional[str] = None
    reviewer_handle: Optional[str] = None
    trust_level: Optional[TrustLevel] = None
    review_date: Optional[str] = None
    review_comment: Optional[str] = None
    next_review_date: Optional[str] = None


class NodeSystemContext(BaseModel):
    layer: Literal["raw", "context", "reflection"] = "raw"
    description: str = ""
    instructions: str = ""


class Node(BaseModel):
    """The atomic knowledge unit stored in the field."""
    id: str = ""
    title: str
    thought: str = ""
    origin: NodeOrigin = PydanticField(default_factory=NodeOrigin)
    artifacts: List[NodeArtifact] = PydanticField(default_factory=list)
    author: str = "anonymous"
    tags: List[str] = PydanticField(default_factory=list)
    suggested_connections: List[str] = PydanticField(default_factory=list)
    connections: List[str] = PydanticField(default_factory=list, description="User-confirmed, reciprocal links")
    status: NodeStatus = "draft"
    review_metadata: Optional[ReviewMetadata] = None
    system_context: NodeSystemContext = PydanticField(default_factory=NodeSystemContext)
    created_at: str = ""
    updated_at: str = ""
    last_tended: str = ""
    connection_count: int = 0


def apply_grounding(node: Node) -> Node:
    """
    Keeps status consistent with evidence.

    A draft with at least one artifact becomes grounded; a grounded node
    whose artifacts were all removed falls back to draft. Reviewed,
    canonical and needs_revision are curation states and are left alone.
    """
    if node.status == "draft" and node.artifacts:
        node.status = "grounded"
    elif node.status == "grounded" and not node.artifacts:
        node.status = "draft"
    return node


class Field(BaseModel):
    """A named topic cluster. node_count is display-only."""
    id: str
    name: str
    description: str = ""
    node_count: int = 0
    tags: List[str] = PydanticField(default_factory=list)
    color: str = "#9AA0A6"


DEFAULT_FIELDS: List[Dict] = [
    {
        "id": "system_design",
        "name": "System Design",
        "description": "Designing systems for care and collaboration",
        "node_count": 14,
        "tags": ["systems", "design", "collaboration"],
        "color": "#8B5CF6",
    },
    {
        "id": "feminist_theory",
        "name": "Feminist Theory",
        "description": "Feminist perspectives on technology and society",
        "node_count": 22,
        "tags": ["feminism", "theory", "technology"],
        "color": "#EC4899",
    },
    {
        "id": "mutual_aid",
        "name": "Mutual Aid",
        "description": "Community care and mutual support systems",
        "node_count": 17,
        "tags": ["mutual-aid", "community", "care"],
        "color": "#10B981",
    },
    {
        "id": "archiving",
        "name": "Archiving",
        "description": "Preserving and organizing knowledge",
        "node_count": 10,
        "tags": ["archiving", "preservation", "knowledge"],
        "color": "#F59E0B",
    },
    {
        "id": "infrastructure",
        "name": "Infrastructure",
        "description": "Building sustainable technical infrastructure",
        "node_count": 8,
        "tags": ["infrastructure", "sustainability", "technology"],
        "color": "#3B82F6",
    },
]


class FieldMembership(BaseModel):
    """A user's role inside one field (backend variant)."""
    field_id: str
    user_id: str
    role: MembershipRole = "contributor"
    joined_at: str = ""


class ActivityEntry(BaseModel):
    """One row of a field's activity feed (backend variant)."""
    id: str = ""
    field_id: Optional[str] = None
    user_id: Optional[str] = None
    action: str
    node_id: Optional[str] = None
    content: Optional[str] = None
    created_at: str = ""


class NodeCounter(BaseModel):
    """Last issued number per node type (-1 when nothing was issued)."""
    type: NodeType
    current_count: int = -1


class SearchOptions(BaseModel):
    query: str = ""
    field: Optional[str] = None
    status: Optional[NodeStatus] = None
    author: Optional[str] = None
    tags: Optional[List[str]] = None
    sort_by: SortBy = "recent"
    sort_order: SortOrder = "desc"


class NodeDraft(BaseModel):
    """In-progress raw node form, autosaved for signed-out authors."""
    statement: str = ""
    description: str = ""
    sources: List[str] = PydanticField(default_factory=list)
    status: NodeStatus = "draft"

    def is_empty(self) -> bool:
        return not (self.statement or self.description or self.sources)
