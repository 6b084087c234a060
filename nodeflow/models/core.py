"""Core Pydantic models for the workflow engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


class NodeType(str, Enum):
    """Node types understood by the dispatcher."""
    INPUT = "input"
    PROMPT = "prompt"
    API = "api"
    LOGIC = "logic"
    FILE_TO_TEXT = "fileToText"
    FILE_UPLOAD = "fileUpload"
    DATA_ENTRY = "dataEntry"
    OUTPUT = "output"

    @classmethod
    def parse(cls, value: Any) -> Optional["NodeType"]:
        """Return the matching member, or None for an unknown type string."""
        try:
            return cls(value)
        except ValueError:
            return None


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class NodeExecutionStatus(str, Enum):
    """Status of a single node execution record."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TraversalStrategy(str, Enum):
    """Traversal strategy chosen for a run."""
    DEPENDENCY_AWARE = "dependency-aware"
    BRANCHING = "branching"


class ComparisonOperator(str, Enum):
    """Operators accepted by logic nodes."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"


def is_set(value: Any) -> bool:
    """A configuration value counts as set unless it is missing or an empty string."""
    return value is not None and value != ""


def first_set(*values: Any) -> Any:
    """Return the first value that is set, or None."""
    for value in values:
        if is_set(value):
            return value
    return None


def text_or_default(value: Any, default: Optional[str]) -> Any:
    """Unset values take the default; numbers and booleans become their text."""
    if not is_set(value):
        return default
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def as_file_list(value: Any) -> Any:
    """A lone file reference (path or mapping) becomes a one-item list."""
    if not is_set(value):
        return []
    if isinstance(value, (str, dict)):
        return [value]
    if isinstance(value, tuple):
        return list(value)
    return value


# Typed node configurations

class NodeConfigBase(BaseModel):
    """Common settings for node configurations: camelCase aliases, unknown keys retained."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None


class InputNodeConfig(NodeConfigBase):
    input_type: str = Field(default="text", alias="inputType")
    text_value: Any = Field(default=None, alias="textValue")
    processed_text: Any = Field(default=None, alias="processedText")
    data: Any = None
    initial_value: Any = Field(default=None, alias="initialValue")
    description: Any = None

    @field_validator('input_type', mode='before')
    @classmethod
    def default_input_type(cls, value):
        return text_or_default(value, "text")


class PromptNodeConfig(NodeConfigBase):
    prompt: str = "Process the following: {{input}}"
    model: Optional[str] = None

    @field_validator('prompt', mode='before')
    @classmethod
    def default_prompt(cls, value):
        return text_or_default(value, "Process the following: {{input}}")

    @field_validator('model', mode='before')
    @classmethod
    def optional_model(cls, value):
        return text_or_default(value, None)


class ApiNodeConfig(NodeConfigBase):
    url: str = "https://api.example.com"
    method: str = "GET"
    headers: Dict[str, Any] = Field(default_factory=dict)
    body: Any = "{}"

    @field_validator('url', mode='before')
    @classmethod
    def default_url(cls, value):
        return text_or_default(value, "https://api.example.com")

    @field_validator('method', mode='before')
    @classmethod
    def default_method(cls, value):
        return str(value).upper() if is_set(value) else "GET"

    @field_validator('headers', mode='before')
    @classmethod
    def default_headers(cls, value):
        return value or {}

    @field_validator('body', mode='before')
    @classmethod
    def default_body(cls, value):
        return "{}" if value is None or value == "" else value


class LogicNodeConfig(NodeConfigBase):
    condition: Any = "true"
    compare_value: Any = Field(default="true", alias="compareValue")
    operator: str = "equals"

    @field_validator('condition', 'compare_value', mode='before')
    @classmethod
    def default_true(cls, value):
        return "true" if value is None or value == "" else value

    @field_validator('operator', mode='before')
    @classmethod
    def default_operator(cls, value):
        return text_or_default(value, "equals")


class FileNodeConfig(NodeConfigBase):
    files: List[Any] = Field(default_factory=list)
    uploaded_files: List[Any] = Field(default_factory=list, alias="uploadedFiles")
    extraction_method: str = Field(default="auto", alias="extractionMethod")
    output_format: str = Field(default="text", alias="outputFormat")
    processed_text: Any = Field(default=None, alias="processedText")
    data: Any = None
    upload_status: Optional[str] = Field(default=None, alias="uploadStatus")

    @field_validator('upload_status', mode='before')
    @classmethod
    def optional_status(cls, value):
        return text_or_default(value, None)

    @field_validator('files', 'uploaded_files', mode='before')
    @classmethod
    def default_files(cls, value):
        return as_file_list(value)

    @field_validator('extraction_method', mode='before')
    @classmethod
    def default_method(cls, value):
        return text_or_default(value, "auto")

    @field_validator('output_format', mode='before')
    @classmethod
    def default_format(cls, value):
        return text_or_default(value, "text")


class OutputNodeConfig(NodeConfigBase):
    format: str = "json"

    @field_validator('format', mode='before')
    @classmethod
    def default_format(cls, value):
        return text_or_default(value, "json")


NodeConfig = Union[
    InputNodeConfig, PromptNodeConfig, ApiNodeConfig, LogicNodeConfig,
    FileNodeConfig, OutputNodeConfig, NodeConfigBase,
]

CONFIG_MODELS = {
    NodeType.INPUT: InputNodeConfig,
    NodeType.PROMPT: PromptNodeConfig,
    NodeType.API: ApiNodeConfig,
    NodeType.LOGIC: LogicNodeConfig,
    NodeType.FILE_TO_TEXT: FileNodeConfig,
    NodeType.FILE_UPLOAD: FileNodeConfig,
    NodeType.DATA_ENTRY: FileNodeConfig,
    NodeType.OUTPUT: OutputNodeConfig,
}


# Graph

class Node(BaseModel):
    """A typed processing step. Accepts the editor shape `{id, type, data: {config}}`."""
    id: str = Field(..., description="Unique identifier for the node")
    type: str = Field(..., description="Node type tag")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-specific configuration")
    label: Optional[str] = Field(None, description="Display label")

    @model_validator(mode='before')
    @classmethod
    def lift_editor_shape(cls, data):
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = dict(data)
            editor_data = data.pop("data")
            if "config" not in data:
                data["config"] = editor_data.get("config") or {}
            if "label" not in data and editor_data.get("label") is not None:
                data["label"] = str(editor_data["label"])
        return data

    @field_validator('id', mode='before')
    @classmethod
    def validate_id(cls, id_value):
        if id_value is None or not str(id_value).strip():
            raise ValueError("Node ID cannot be empty")
        return str(id_value)

    @field_validator('config', mode='before')
    @classmethod
    def default_config(cls, value):
        return value or {}

    @property
    def node_type(self) -> Optional[NodeType]:
        return NodeType.parse(self.type)

    def lenient_config(self) -> Tuple[NodeConfig, List[str]]:
        """Parse `config`, resetting fields with unusable values to their defaults.

        Returns the parsed configuration and the names of the fields that were
        reset, as they appear in `config`.
        """
        model = CONFIG_MODELS.get(self.node_type, NodeConfigBase)
        try:
            return model.model_validate(self.config), []
        except ValidationError as e:
            failed = {str(error["loc"][0]) for error in e.errors() if error.get("loc")}

        # Error locations use the alias; the config may use either spelling.
        for name, field in model.model_fields.items():
            if name in failed or field.alias in failed:
                failed.update(key for key in (name, field.alias) if key)

        invalid = sorted(key for key in self.config if key in failed)
        usable = {key: value for key, value in self.config.items() if key not in failed}
        return model.model_validate(usable), invalid


class Edge(BaseModel):
    """Directed connection; `branchLabel` selects the path out of a logic node."""
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    branch_label: Optional[str] = Field(None, alias="branchLabel", description="Branch selector: 'true' or 'false'")

    @model_validator(mode='before')
    @classmethod
    def accept_source_handle(cls, data):
        if isinstance(data, dict) and data.get("branchLabel") is None and data.get("branch_label") is None:
            handle = data.get("sourceHandle")
            if handle is not None:
                data = dict(data)
                data["branchLabel"] = handle
        return data

    @field_validator('id', 'source', 'target', mode='before')
    @classmethod
    def coerce_ids(cls, value):
        return value if value is None else str(value)

    @field_validator('branch_label', mode='before')
    @classmethod
    def normalize_label(cls, value):
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @model_validator(mode='after')
    def default_id(self):
        if not self.id:
            self.id = f"{self.source}-{self.target}"
        return self


class WorkflowGraph(BaseModel):
    """Nodes plus edges. No acyclicity is enforced."""
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_map(self) -> Dict[str, Node]:
        """Node lookup by id. The first declaration wins for duplicates."""
        nodes: Dict[str, Node] = {}
        for node in self.nodes:
            nodes.setdefault(node.id, node)
        return nodes

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.target == node_id]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self.edges if edge.source == node_id]

    def has_logic_nodes(self) -> bool:
        return any(node.node_type == NodeType.LOGIC for node in self.nodes)


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


# Node outcomes

class OutcomeKind(str, Enum):
    """Failure kinds a node action can report without raising."""
    CAPABILITY = "capability"
    CONFIGURATION = "configuration"


class NodeOutcome(BaseModel):
    """Result of a node action: ok(output) or err(kind, message, output).

    An err still carries the degraded output envelope so the engine can embed
    it when the run continues.
    """
    ok: bool
    output: Any = None
    kind: Optional[OutcomeKind] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, output: Any) -> "NodeOutcome":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, kind: OutcomeKind, message: str, output: Any) -> "NodeOutcome":
        return cls(ok=False, kind=kind, message=message, output=output)


# Capability results

class CompletionResult(BaseModel):
    """Result of an AI completion request."""
    success: bool
    text: str = ""
    error: Optional[str] = None


class FileExtractionResult(BaseModel):
    """Text extracted from a single file."""
    file_name: str = Field(..., alias="fileName")
    success: bool
    text: str = ""
    method: str = "plain"
    error: Optional[str] = None
    size: Optional[int] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")

    model_config = ConfigDict(populate_by_name=True)


# Records and results

class NodeExecutionRecord(BaseModel):
    """Persistence shape written before and after each node dispatch."""
    record_id: str = Field(..., alias="recordId")
    execution_id: str = Field(..., alias="executionId")
    node_id: str = Field(..., alias="nodeId")
    node_type: str = Field(..., alias="nodeType")
    status: NodeExecutionStatus
    input_data: Any = Field(None, alias="inputData")
    output_data: Any = Field(None, alias="outputData")
    elapsed_ms: Optional[int] = Field(None, alias="elapsedMs")
    error_message: Optional[str] = Field(None, alias="errorMessage")
    started_at: datetime = Field(..., alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")

    model_config = ConfigDict(populate_by_name=True)


class ContextSnapshot(BaseModel):
    """Serializable copy of an execution context."""
    model_config = ConfigDict(populate_by_name=True)

    node_outputs: Dict[str, Any] = Field(default_factory=dict, alias="nodeOutputs")
    variables: Dict[str, Any] = Field(default_factory=dict)
    global_data: Dict[str, Any] = Field(default_factory=dict, alias="globalData")


class ExecutionResult(BaseModel):
    """Outcome of one run. Failures are reported here, never raised."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    result: Optional[ContextSnapshot] = None
    executed_nodes: int = Field(0, alias="executedNodes")
    execution_order: List[str] = Field(default_factory=list, alias="executionOrder")
    total_edges: int = Field(0, alias="totalEdges")
    strategy: Optional[TraversalStrategy] = None
    execution_id: Optional[str] = Field(None, alias="executionId")
    error: Optional[str] = None
    details: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        payload = self.model_dump(by_alias=True, mode="json")
        return {key: value for key, value in payload.items() if value is not None}


class WorkflowDefinition(BaseModel):
    """A named, storable workflow graph."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., description="Name of the workflow")
    description: str = Field("", description="Description of the workflow")
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, alias="userId")
    is_public: bool = Field(False, alias="isPublic")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @field_validator('description', mode='before')
    @classmethod
    def default_description(cls, value):
        return value or ""

    def graph(self) -> WorkflowGraph:
        return WorkflowGraph(nodes=self.nodes, edges=self.edges)


class StoredWorkflow(WorkflowDefinition):
    """Workflow definition as persisted."""
    id: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class WorkflowSummary(BaseModel):
    """Summary information about a stored workflow."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: str
    node_count: int = Field(..., alias="nodeCount")
    edge_count: int = Field(..., alias="edgeCount")
    is_public: bool = Field(False, alias="isPublic")
    created_at: datetime = Field(..., alias="createdAt")


class WorkflowExecution(BaseModel):
    """Run-level bookkeeping."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    workflow_id: Optional[str] = Field(None, alias="workflowId")
    status: ExecutionStatusEnum
    input_data: Any = Field(None, alias="inputData")
    output_data: Any = Field(None, alias="outputData")
    strategy: Optional[str] = None
    executed_nodes: int = Field(0, alias="executedNodes")
    started_at: Optional[datetime] = Field(None, alias="startedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    error_message: Optional[str] = Field(None, alias="errorMessage")
