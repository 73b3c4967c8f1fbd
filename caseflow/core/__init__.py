# Core module
# Exports the compiled graph model and duration helpers

from .model import (
    BaseNode,
    CallActivityNode,
    CompiledProcess,
    Container,
    EndNode,
    EventStartType,
    EventSubprocess,
    ExclusiveGatewayNode,
    Node,
    ParallelGatewayNode,
    ScriptTaskNode,
    ServiceTaskNode,
    StartNode,
    SubProcessNode,
    TimerBoundaryNode,
    Transition,
    UserTaskFormField,
    UserTaskNode,
    VariableMapping,
)
from .durations import parse_duration

__all__ = [
    "BaseNode",
    "CallActivityNode",
    "CompiledProcess",
    "Container",
    "EndNode",
    "EventStartType",
    "EventSubprocess",
    "ExclusiveGatewayNode",
    "Node",
    "ParallelGatewayNode",
    "ScriptTaskNode",
    "ServiceTaskNode",
    "StartNode",
    "SubProcessNode",
    "TimerBoundaryNode",
    "Transition",
    "UserTaskFormField",
    "UserTaskNode",
    "VariableMapping",
    "parse_duration",
]
