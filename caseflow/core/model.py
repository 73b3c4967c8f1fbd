# Graph Model for caseflow
# Canonical, immutable representation of a compiled process

from enum import Enum
from typing import Annotated, Dict, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from caseflow.errors import ConfigurationError


class GraphModel(BaseModel):
    """Base for all graph model types: frozen, camelCase on the wire."""

    class Config:
        frozen = True
        alias_generator = to_camel
        populate_by_name = True


class EventStartType(str, Enum):
    TIMER = "TIMER"
    MESSAGE = "MESSAGE"
    SIGNAL = "SIGNAL"


class VariableMapping(GraphModel):
    """Copy rule between a parent and a child variable context."""

    source: Optional[str] = None
    target: Optional[str] = None
    all_variables: bool = False


class UserTaskFormField(GraphModel):
    id: str
    label: Optional[str] = None
    type: Optional[str] = None
    default_value: Optional[str] = None
    required: bool = False
    read_only: bool = False
    properties: Dict[str, str] = Field(default_factory=dict)


class Transition(GraphModel):
    """
    Directed edge between two nodes of the same container.

    A transition carrying an error code, signal name or message name is a
    boundary edge and is never taken by ordinary sequential advance.
    """

    from_id: str
    to_id: str
    condition_expression: Optional[str] = None
    error_code: Optional[str] = None
    signal_name: Optional[str] = None
    message_name: Optional[str] = None
    is_default: bool = False

    @property
    def is_boundary(self) -> bool:
        return (
            self.error_code is not None
            or self.signal_name is not None
            or self.message_name is not None
        )


# ==================== Node Variants ====================


class BaseNode(GraphModel):
    id: str
    name: str


class StartNode(BaseNode):
    kind: Literal["start"] = "start"


class EndNode(BaseNode):
    kind: Literal["end"] = "end"
    terminate: bool = False


class UserTaskNode(BaseNode):
    kind: Literal["userTask"] = "userTask"
    form_key: Optional[str] = None
    assignee_role: Optional[str] = None
    form_fields: Tuple[UserTaskFormField, ...] = ()


class ServiceTaskNode(BaseNode):
    kind: Literal["serviceTask"] = "serviceTask"
    handler_key: str


class ScriptTaskNode(BaseNode):
    kind: Literal["scriptTask"] = "scriptTask"
    script_format: str
    script: str
    handler_key: Optional[str] = None


class ExclusiveGatewayNode(BaseNode):
    kind: Literal["exclusiveGateway"] = "exclusiveGateway"


class ParallelGatewayNode(BaseNode):
    kind: Literal["parallelGateway"] = "parallelGateway"


class CallActivityNode(BaseNode):
    kind: Literal["callActivity"] = "callActivity"
    called_process_key: str
    in_mappings: Tuple[VariableMapping, ...] = ()
    out_mappings: Tuple[VariableMapping, ...] = ()


class TimerBoundaryNode(BaseNode):
    """Delay node; ``attached_to_task_id`` is None for intermediate timers."""

    kind: Literal["timerBoundary"] = "timerBoundary"
    attached_to_task_id: Optional[str] = None
    duration_expression: str


class SubProcessNode(BaseNode):
    kind: Literal["subProcess"] = "subProcess"
    start_node_id: str
    nodes: Tuple["Node", ...] = ()
    transitions: Tuple[Transition, ...] = ()


Node = Annotated[
    Union[
        StartNode,
        EndNode,
        UserTaskNode,
        ServiceTaskNode,
        ScriptTaskNode,
        ExclusiveGatewayNode,
        ParallelGatewayNode,
        CallActivityNode,
        TimerBoundaryNode,
        SubProcessNode,
    ],
    Field(discriminator="kind"),
]

SubProcessNode.model_rebuild()

GATEWAY_TYPES = (ExclusiveGatewayNode, ParallelGatewayNode)


class EventSubprocess(GraphModel):
    id: str
    start_event_type: EventStartType
    start_event_ref: str
    nodes: Tuple[Node, ...] = ()
    transitions: Tuple[Transition, ...] = ()
    trigger_name: Optional[str] = None
    timer_expression: Optional[str] = None


class CompiledProcess(GraphModel):
    """A versioned, immutable compiled process definition."""

    process_key: str
    version: int
    start_node_id: str
    nodes: Tuple[Node, ...] = ()
    transitions: Tuple[Transition, ...] = ()
    event_subprocesses: Tuple[EventSubprocess, ...] = ()

    def iter_nodes(self) -> Iterator[BaseNode]:
        """Yield every node, descending into sub-processes and event subprocesses."""
        yield from _walk(self.nodes)
        for esp in self.event_subprocesses:
            yield from _walk(esp.nodes)


def _walk(nodes) -> Iterator[BaseNode]:
    for node in nodes:
        yield node
        if isinstance(node, SubProcessNode):
            yield from _walk(node.nodes)


# ==================== Container View ====================


class Container:
    """
    Read-only lookup view over one node/transition scope.

    A container is the top-level process, a SubProcess node, or an event
    subprocess. The interpreter and the compiler's structural checks both
    work against this view so nested scopes behave like the top level.
    """

    def __init__(self, container_id: str, start_node_id: str, nodes, transitions):
        self.id = container_id
        self.start_node_id = start_node_id
        self.nodes: Dict[str, BaseNode] = {node.id: node for node in nodes}
        self.transitions: Tuple[Transition, ...] = tuple(transitions)

    @classmethod
    def of_process(cls, process: CompiledProcess) -> "Container":
        return cls(process.process_key, process.start_node_id, process.nodes, process.transitions)

    @classmethod
    def of_sub_process(cls, node: SubProcessNode) -> "Container":
        return cls(node.id, node.start_node_id, node.nodes, node.transitions)

    @classmethod
    def of_event_subprocess(cls, esp: EventSubprocess) -> "Container":
        return cls(esp.id, esp.start_event_ref, esp.nodes, esp.transitions)

    def node(self, node_id: str) -> BaseNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown node id '{node_id}' in container '{self.id}'"
            ) from None

    def outgoing(self, node_id: str) -> List[Transition]:
        return [t for t in self.transitions if t.from_id == node_id]

    def normal_outgoing(self, node_id: str) -> List[Transition]:
        return [t for t in self.outgoing(node_id) if not t.is_boundary]

    def normal_incoming(self, node_id: str) -> List[Transition]:
        return [t for t in self.transitions if t.to_id == node_id and not t.is_boundary]

    def next_sequence(self, from_id: str) -> str:
        """Target of the single normal outgoing transition of a node."""
        candidates = self.normal_outgoing(from_id)
        if not candidates:
            raise ConfigurationError(f"No outgoing transition from '{from_id}'")
        if len(candidates) != 1:
            raise ConfigurationError(
                f"Node '{from_id}' must have exactly one normal outgoing transition "
                f"(found {len(candidates)})"
            )
        return candidates[0].to_id
