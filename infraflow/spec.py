"""
Architecture spec: Pydantic models shared by the parser, the diff applier and
the modify round-trip. Wire format uses camelCase aliases (templateUsed,
currentSpec, flowType); Python code uses the snake_case field names.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from infraflow.errors import ModifyErrorCode

_WIRE = {"alias_generator": to_camel, "populate_by_name": True}

# Discrete confidence bands
CONFIDENCE_TEMPLATE = 0.8
CONFIDENCE_COMPONENT = 0.5
CONFIDENCE_FALLBACK = 0.3
CONFIDENCE_INVALID = 0.0


# ---------------------------------------------------------------------------
# Tier: coarse network zone of a node
# ---------------------------------------------------------------------------
Tier = Literal["external", "dmz", "internal", "data"]

TIERS: tuple[str, ...] = ("external", "dmz", "internal", "data")


# ---------------------------------------------------------------------------
# Node: single infrastructure component
# ---------------------------------------------------------------------------
NodeType = Literal[
    "user",
    "internet",
    "firewall",
    "waf",
    "ids-ips",
    "vpn-gateway",
    "nac",
    "dlp",
    "router",
    "switch-l2",
    "switch-l3",
    "load-balancer",
    "sd-wan",
    "dns",
    "cdn",
    "web-server",
    "app-server",
    "db-server",
    "container",
    "vm",
    "kubernetes",
    "aws-vpc",
    "azure-vnet",
    "gcp-network",
    "private-cloud",
    "san-nas",
    "object-storage",
    "backup",
    "cache",
    "storage",
    "ldap-ad",
    "sso",
    "mfa",
    "iam",
]


class Node(BaseModel):
    id: str = Field(..., min_length=1, description="Stable, opaque node identifier")
    type: NodeType = Field(..., description="Component kind")
    label: str = Field(..., description="Display name (may be localized)")
    tier: Tier | None = Field(default=None, description="Network zone classification")
    description: str | None = Field(default=None, description="Optional free text")

    model_config = {**_WIRE, "extra": "forbid"}


# ---------------------------------------------------------------------------
# Connection: directed data flow between two nodes
# ---------------------------------------------------------------------------
FlowType = Literal["request", "response", "sync", "blocked", "encrypted"]


class Connection(BaseModel):
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    flow_type: FlowType = Field(default="request", description="Determines line style")
    label: str | None = Field(default=None, description="Optional edge label")

    model_config = {**_WIRE, "extra": "forbid"}


# ---------------------------------------------------------------------------
# Root architecture graph
# ---------------------------------------------------------------------------
class Spec(BaseModel):
    """Root model for an architecture graph."""

    name: str = Field(default="", description="Architecture name")
    description: str = Field(default="", description="Short description")
    nodes: list[Node] = Field(default_factory=list, description="Components")
    connections: list[Connection] = Field(default_factory=list, description="Directed flows")

    model_config = {**_WIRE, "extra": "forbid"}

    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def find_node(self, node_id: str) -> Node | None:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def first_of_type(self, node_type: str) -> Node | None:
        for n in self.nodes:
            if n.type == node_type:
                return n
        return None


# ---------------------------------------------------------------------------
# Operations: one atomic edit each, tagged on "type"
# ---------------------------------------------------------------------------
class NodeDraft(BaseModel):
    """Node payload for add-node; id, label and tier are filled in when absent."""

    id: str | None = Field(default=None, description="Explicit id, minted when omitted")
    type: NodeType = Field(..., description="Component kind")
    label: str | None = Field(default=None, description="Display name")
    tier: Tier | None = Field(default=None, description="Network zone")
    description: str | None = Field(default=None, description="Optional free text")

    model_config = {**_WIRE, "extra": "forbid"}


class AddNode(BaseModel):
    type: Literal["add-node"] = "add-node"
    node: NodeDraft
    after: str | None = Field(default=None, description="Connect after this node id")
    before: str | None = Field(default=None, description="Connect before this node id")
    between: tuple[str, str] | None = Field(
        default=None,
        description="Splice into the source→target edge between these node ids",
    )

    model_config = {**_WIRE, "extra": "forbid"}


class RemoveNode(BaseModel):
    type: Literal["remove-node"] = "remove-node"
    node_id: str = Field(..., min_length=1)

    model_config = {**_WIRE, "extra": "forbid"}


class ModifyNode(BaseModel):
    type: Literal["modify-node"] = "modify-node"
    node_id: str = Field(..., min_length=1)
    label: str | None = None
    description: str | None = None
    tier: Tier | None = None
    new_type: NodeType | None = Field(default=None, description="Replace the component kind, keeping the id")

    model_config = {**_WIRE, "extra": "forbid"}


class AddEdge(BaseModel):
    type: Literal["add-edge"] = "add-edge"
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    flow_type: FlowType | None = None
    label: str | None = None

    model_config = {**_WIRE, "extra": "forbid"}


class RemoveEdge(BaseModel):
    type: Literal["remove-edge"] = "remove-edge"
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)

    model_config = {**_WIRE, "extra": "forbid"}


Operation = Annotated[
    Union[AddNode, RemoveNode, ModifyNode, AddEdge, RemoveEdge],
    Field(discriminator="type"),
]

OPERATION_LIST = TypeAdapter(list[Operation])


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
CommandType = Literal[
    "create",
    "add",
    "remove",
    "modify",
    "connect",
    "disconnect",
    "query",
    "template",
    "llm-modify",
]


class ParseResult(BaseModel):
    """Outcome of one prompt submission. Immutable once returned."""

    success: bool
    spec: Spec | None = None
    confidence: float = Field(..., ge=0, le=1)
    template_used: str | None = None
    command_type: CommandType | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    is_fallback: bool = False
    explanation: str | None = None
    modifications: list[Operation] = Field(default_factory=list)
    query: str | None = None

    model_config = {**_WIRE, "frozen": True}


class ModifyErrorDetail(BaseModel):
    code: ModifyErrorCode
    user_message: str
    technical_message: str | None = None
    recoverable: bool = True
    retry_after: int | None = None

    model_config = {**_WIRE}


class ModifyResult(BaseModel):
    """Response of one modification round-trip."""

    success: bool
    spec: Spec | None = None
    reasoning: str | None = None
    operations: list[Operation] | None = None
    error: str | None = None
    error_detail: ModifyErrorDetail | None = None

    model_config = {**_WIRE, "frozen": True}


# ---------------------------------------------------------------------------
# Rendering boundary
# ---------------------------------------------------------------------------
class Position(BaseModel):
    x: float
    y: float


class RenderNode(BaseModel):
    id: str
    node_type: NodeType
    label: str
    tier: Tier | None = None
    description: str | None = None
    position: Position

    model_config = {**_WIRE}


class RenderEdge(BaseModel):
    id: str
    source: str
    target: str
    flow_type: FlowType = "request"
    label: str | None = None

    model_config = {**_WIRE}


class ModifyRequest(BaseModel):
    """Body of the remote modify call."""

    prompt: str
    current_spec: Spec
    nodes: list[RenderNode] = Field(default_factory=list)
    edges: list[RenderEdge] = Field(default_factory=list)

    model_config = {**_WIRE}


# ---------------------------------------------------------------------------
# JSON Schema export / validation
# ---------------------------------------------------------------------------
def get_json_schema() -> dict[str, Any]:
    """Return JSON Schema for Spec (for LLM prompts and validation)."""
    return Spec.model_json_schema(by_alias=True)


def get_operations_schema() -> dict[str, Any]:
    return OPERATION_LIST.json_schema(by_alias=True)


def validate_spec(data: dict[str, Any]) -> tuple[Spec | None, list[str]]:
    """
    Validate raw dict against the Spec schema.
    Returns (Spec instance, list of human-friendly error messages).
    """
    errors: list[str] = []
    try:
        model = Spec.model_validate(data)
        return (model, [])
    except ValidationError as e:
        for err in e.errors():
            loc = ".".join(str(x) for x in err.get("loc", []))
            msg = err.get("msg", str(err))
            errors.append(f"{loc}: {msg}")
        return (None, errors)
