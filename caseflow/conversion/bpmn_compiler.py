#!/usr/bin/env python3
"""
BPMN Compiler
Compiles BPMN 2.0 XML (Camunda 7 flavour) into a CompiledProcess graph.

The compiler walks the process element recursively. Every scope (the process
itself, an embedded subProcess, an event subprocess) becomes its own set of
nodes and transitions. Boundary events do not become nodes: each error,
signal or message boundary becomes a transition from the host activity to the
target of the boundary's outgoing flow.

Element and attribute names are matched by local name so both prefixed
(``bpmn:``) and default-namespace documents compile.
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from caseflow.conversion import codec
from caseflow.core.model import (
    GATEWAY_TYPES,
    BaseNode,
    CallActivityNode,
    CompiledProcess,
    Container,
    EndNode,
    EventStartType,
    EventSubprocess,
    ExclusiveGatewayNode,
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
from caseflow.errors import CompilationError

logger = logging.getLogger(__name__)

CAMUNDA_NS = "http://camunda.org/schema/1.0/bpmn"

HANDLER_KEY_PROPERTY = "handlerKey"
DEFAULT_SCRIPT_FORMAT = "python"
SUPPORTED_SCRIPT_FORMATS = {"python"}

# Flow elements that exist in BPMN but have no runtime meaning here
UNSUPPORTED_FLOW_NODES = {
    "task",
    "sendTask",
    "receiveTask",
    "manualTask",
    "businessRuleTask",
    "inclusiveGateway",
    "eventBasedGateway",
    "complexGateway",
    "intermediateThrowEvent",
    "transaction",
    "adHocSubProcess",
}


def _local(tag: str) -> str:
    """Extract the local name from a qualified ElementTree tag."""
    if "}" in tag:
        return tag.split("}", 1)[1]
    return tag


def _children(element: ET.Element, name: str) -> List[ET.Element]:
    return [child for child in element if _local(child.tag) == name]


def _first_child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _camunda(element: ET.Element, name: str) -> Optional[str]:
    return element.get(f"{{{CAMUNDA_NS}}}{name}")


def _text(element: Optional[ET.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    stripped = element.text.strip()
    return stripped or None


def _is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() == "true"


TRIGGER_DEFINITIONS = ("timerEventDefinition", "messageEventDefinition", "signalEventDefinition")


def _plain_starts(scope: ET.Element) -> List[ET.Element]:
    """Start events of a scope that wait for no timer, message or signal."""
    return [
        start for start in _children(scope, "startEvent")
        if not any(_first_child(start, name) is not None for name in TRIGGER_DEFINITIONS)
    ]


@dataclass
class _Definitions:
    """Document-level lookup tables for error codes, signal and message names."""

    errors: Dict[str, str] = field(default_factory=dict)
    signals: Dict[str, str] = field(default_factory=dict)
    messages: Dict[str, str] = field(default_factory=dict)


class BpmnCompiler:
    """Compile BPMN XML into an immutable CompiledProcess."""

    def compile(self, process_key: str, xml: str, version: int) -> CompiledProcess:
        """
        Compile a BPMN document.

        Args:
            process_key: Requested process key; the process with this id is
                compiled, falling back to the first process in the document
            xml: BPMN 2.0 XML text
            version: Version number stamped on the result

        Returns:
            The compiled process

        Raises:
            CompilationError: If the document is malformed or incomplete
        """
        root = self._parse(process_key, xml)

        processes = [el for el in root.iter() if _local(el.tag) == "process"]
        if not processes:
            raise CompilationError(process_key, "no <process> element found")

        process = next((p for p in processes if p.get("id") == process_key), None)
        if process is None:
            process = processes[0]
            logger.warning(
                f"No process with id '{process_key}'; compiling first process "
                f"'{process.get('id')}' instead"
            )

        process_id = process.get("id") or process_key
        self._process_key = process_key
        self._definitions = self._collect_definitions(root)
        self._scope_ids: List[str] = []

        starts = _plain_starts(process)
        if len(starts) != 1:
            raise CompilationError(
                process_key,
                f"process '{process_id}' must have exactly one untriggered start event "
                f"(found {len(starts)})",
            )

        nodes, transitions, event_subprocesses = self._compile_scope(process, process_id)
        compiled = CompiledProcess(
            process_key=process_id,
            version=version,
            start_node_id=starts[0].get("id"),
            nodes=tuple(nodes),
            transitions=tuple(transitions),
            event_subprocesses=tuple(event_subprocesses),
        )

        self._validate(Container.of_process(compiled))
        for esp in compiled.event_subprocesses:
            self._validate(Container.of_event_subprocess(esp))

        logger.info(
            f"Compiled process '{process_id}' v{version}: {len(compiled.nodes)} nodes, "
            f"{len(compiled.transitions)} transitions, "
            f"{len(compiled.event_subprocesses)} event subprocesses"
        )
        return compiled

    def to_json(self, process: CompiledProcess) -> str:
        return codec.to_json(process)

    def from_json(self, text: str) -> CompiledProcess:
        return codec.from_json(text)

    # ==================== Parsing ====================

    def _parse(self, process_key: str, xml: str) -> ET.Element:
        if not xml or not xml.strip():
            raise CompilationError(process_key, "empty BPMN document")
        try:
            return ET.fromstring(xml)
        except ET.ParseError as e:
            raise CompilationError(process_key, f"invalid XML: {e}") from e

    def _collect_definitions(self, root: ET.Element) -> _Definitions:
        definitions = _Definitions()
        for element in root.iter():
            tag = _local(element.tag)
            element_id = element.get("id")
            if not element_id:
                continue
            if tag == "error":
                definitions.errors[element_id] = element.get("errorCode") or element_id
            elif tag == "signal":
                definitions.signals[element_id] = element.get("name") or element_id
            elif tag == "message":
                definitions.messages[element_id] = element.get("name") or element_id
        return definitions

    # ==================== Scopes ====================

    def _compile_scope(
        self, scope: ET.Element, scope_id: str
    ) -> Tuple[List[BaseNode], List[Transition], List[EventSubprocess]]:
        nodes: List[BaseNode] = []
        event_subprocesses: List[EventSubprocess] = []

        self._scope_ids.append(scope_id)
        try:
            for child in scope:
                tag = _local(child.tag)
                if tag == "subProcess" and _is_true(child.get("triggeredByEvent")):
                    event_subprocesses.append(self._compile_event_subprocess(child))
                    continue
                node = self._compile_node(tag, child)
                if node is not None:
                    nodes.append(node)
        finally:
            self._scope_ids.pop()

        transitions = self._compile_sequence_flows(scope)
        transitions.extend(self._compile_boundary_transitions(scope))
        return nodes, transitions, event_subprocesses

    def _compile_node(self, tag: str, element: ET.Element) -> Optional[BaseNode]:
        node_id = element.get("id")
        if tag in UNSUPPORTED_FLOW_NODES:
            logger.warning(f"Skipping unsupported element <{tag}> '{node_id}'")
            return None

        builders = {
            "startEvent": self._start_event,
            "endEvent": self._end_event,
            "userTask": self._user_task,
            "serviceTask": self._service_task,
            "scriptTask": self._script_task,
            "exclusiveGateway": self._exclusive_gateway,
            "parallelGateway": self._parallel_gateway,
            "callActivity": self._call_activity,
            "boundaryEvent": self._boundary_event,
            "intermediateCatchEvent": self._intermediate_catch_event,
            "subProcess": self._sub_process,
        }
        builder = builders.get(tag)
        if builder is None:
            return None
        if not node_id:
            raise CompilationError(self._process_key, f"<{tag}> element without an id")
        return builder(element, node_id, element.get("name") or node_id)

    def _compile_event_subprocess(self, element: ET.Element) -> EventSubprocess:
        esp_id = element.get("id")
        starts = _children(element, "startEvent")
        if not starts:
            raise CompilationError(
                self._process_key, f"event subprocess '{esp_id}' has no start event"
            )
        start = starts[0]

        trigger_name = None
        timer_expression = None
        timer = _first_child(start, "timerEventDefinition")
        message = _first_child(start, "messageEventDefinition")
        signal = _first_child(start, "signalEventDefinition")
        if timer is not None:
            start_type = EventStartType.TIMER
            timer_expression = _text(_first_child(timer, "timeDuration")) or _text(
                _first_child(timer, "timeCycle")
            )
        elif message is not None:
            start_type = EventStartType.MESSAGE
            trigger_name = self._lookup(self._definitions.messages, message.get("messageRef"))
        elif signal is not None:
            start_type = EventStartType.SIGNAL
            trigger_name = self._lookup(self._definitions.signals, signal.get("signalRef"))
        else:
            raise CompilationError(
                self._process_key,
                f"event subprocess '{esp_id}' start event has no timer, message "
                f"or signal definition",
            )

        nodes, transitions, nested = self._compile_scope(element, element.get("id"))
        if nested:
            logger.warning(f"Ignoring event subprocesses nested in '{esp_id}'")

        return EventSubprocess(
            id=esp_id,
            start_event_type=start_type,
            start_event_ref=start.get("id"),
            nodes=tuple(nodes),
            transitions=tuple(transitions),
            trigger_name=trigger_name,
            timer_expression=timer_expression,
        )

    # ==================== Node Builders ====================

    def _start_event(self, element, node_id, name):
        return StartNode(id=node_id, name=name)

    def _end_event(self, element, node_id, name):
        terminate = _first_child(element, "terminateEventDefinition") is not None
        return EndNode(id=node_id, name=name, terminate=terminate)

    def _user_task(self, element, node_id, name):
        return UserTaskNode(
            id=node_id,
            name=name,
            form_key=_camunda(element, "formKey"),
            assignee_role=_camunda(element, "candidateGroups"),
            form_fields=tuple(self._form_fields(element)),
        )

    def _service_task(self, element, node_id, name):
        return ServiceTaskNode(
            id=node_id,
            name=name,
            handler_key=self._handler_key(element, node_id),
        )

    def _script_task(self, element, node_id, name):
        script_format = (element.get("scriptFormat") or DEFAULT_SCRIPT_FORMAT).strip()
        if script_format.lower() not in SUPPORTED_SCRIPT_FORMATS:
            logger.warning(
                f"Script task '{node_id}' uses format '{script_format}', "
                f"which will fail when executed"
            )
        return ScriptTaskNode(
            id=node_id,
            name=name,
            script_format=script_format,
            script=_text(_first_child(element, "script")) or "",
            handler_key=self._handler_key(element, node_id),
        )

    def _exclusive_gateway(self, element, node_id, name):
        return ExclusiveGatewayNode(id=node_id, name=name)

    def _parallel_gateway(self, element, node_id, name):
        return ParallelGatewayNode(id=node_id, name=name)

    def _call_activity(self, element, node_id, name):
        called = (element.get("calledElement") or "").strip()
        if not called:
            raise CompilationError(
                self._process_key, f"call activity '{node_id}' has no calledElement"
            )
        extensions = _first_child(element, "extensionElements")
        in_mappings: List[VariableMapping] = []
        out_mappings: List[VariableMapping] = []
        if extensions is not None:
            for mapping in extensions:
                tag = _local(mapping.tag)
                if tag not in ("in", "out"):
                    continue
                parsed = self._variable_mapping(node_id, mapping)
                if parsed is not None:
                    (in_mappings if tag == "in" else out_mappings).append(parsed)
        return CallActivityNode(
            id=node_id,
            name=name,
            called_process_key=called,
            in_mappings=tuple(in_mappings),
            out_mappings=tuple(out_mappings),
        )

    def _boundary_event(self, element, node_id, name):
        # Error, signal and message boundaries become transitions on the host
        timer = _first_child(element, "timerEventDefinition")
        if timer is None:
            return None
        return self._timer_node(timer, node_id, name, element.get("attachedToRef"))

    def _intermediate_catch_event(self, element, node_id, name):
        timer = _first_child(element, "timerEventDefinition")
        if timer is None:
            logger.warning(f"Skipping non-timer intermediate catch event '{node_id}'")
            return None
        return self._timer_node(timer, node_id, name, None)

    def _sub_process(self, element, node_id, name):
        starts = _plain_starts(element)
        if len(starts) != 1:
            raise CompilationError(
                self._process_key,
                f"sub-process '{node_id}' must have exactly one untriggered start event "
                f"(found {len(starts)})",
            )
        nodes, transitions, nested = self._compile_scope(element, element.get("id"))
        if nested:
            logger.warning(f"Ignoring event subprocesses nested in sub-process '{node_id}'")
        return SubProcessNode(
            id=node_id,
            name=name,
            start_node_id=starts[0].get("id"),
            nodes=tuple(nodes),
            transitions=tuple(transitions),
        )

    # ==================== Node Details ====================

    def _timer_node(self, timer, node_id, name, attached_to) -> TimerBoundaryNode:
        duration = _text(_first_child(timer, "timeDuration"))
        if duration is None:
            logger.warning(f"Timer '{node_id}' has no timeDuration")
        return TimerBoundaryNode(
            id=node_id,
            name=name,
            attached_to_task_id=attached_to,
            duration_expression=duration or "",
        )

    def _handler_key(self, element: ET.Element, node_id: str) -> str:
        """Handler key property from extensionElements, else ``{container}.{node}``."""
        extensions = _first_child(element, "extensionElements")
        if extensions is not None:
            for properties in _children(extensions, "properties"):
                for prop in _children(properties, "property"):
                    prop_name = prop.get("name") or prop.get("id")
                    value = (prop.get("value") or "").strip()
                    if prop_name == HANDLER_KEY_PROPERTY and value:
                        return value
        return f"{self._scope_ids[-1]}.{node_id}"

    def _form_fields(self, element: ET.Element) -> List[UserTaskFormField]:
        extensions = _first_child(element, "extensionElements")
        if extensions is None:
            return []
        form_data = _first_child(extensions, "formData")
        if form_data is None:
            return []

        fields = []
        for form_field in _children(form_data, "formField"):
            constraints = set()
            validation = _first_child(form_field, "validation")
            if validation is not None:
                constraints = {
                    c.get("name") for c in _children(validation, "constraint") if c.get("name")
                }
            properties: Dict[str, str] = {}
            props = _first_child(form_field, "properties")
            if props is not None:
                for prop in _children(props, "property"):
                    key = prop.get("id") or prop.get("name")
                    if key:
                        properties[key] = prop.get("value") or ""
            fields.append(
                UserTaskFormField(
                    id=form_field.get("id"),
                    label=form_field.get("label"),
                    type=form_field.get("type"),
                    default_value=form_field.get("defaultValue"),
                    required="required" in constraints,
                    read_only="readonly" in constraints,
                    properties=properties,
                )
            )
        return fields

    def _variable_mapping(self, node_id: str, element: ET.Element) -> Optional[VariableMapping]:
        if (element.get("variables") or "").strip().lower() == "all":
            return VariableMapping(all_variables=True)
        source = element.get("source")
        if not source:
            logger.warning(
                f"Call activity '{node_id}': skipping mapping without a source variable"
            )
            return None
        return VariableMapping(source=source, target=element.get("target") or source)

    # ==================== Transitions ====================

    def _compile_sequence_flows(self, scope: ET.Element) -> List[Transition]:
        defaults = {
            child.get("id"): child.get("default") for child in scope if child.get("default")
        }
        transitions = []
        for flow in _children(scope, "sequenceFlow"):
            source = flow.get("sourceRef")
            target = flow.get("targetRef")
            if not source or not target:
                raise CompilationError(
                    self._process_key,
                    f"sequence flow '{flow.get('id')}' is missing sourceRef or targetRef",
                )
            condition = None
            condition_element = _first_child(flow, "conditionExpression")
            if condition_element is not None:
                condition = _text(condition_element) or _camunda(condition_element, "expression")
            if condition is None:
                condition = _camunda(flow, "expression")
            transitions.append(
                Transition(
                    from_id=source,
                    to_id=target,
                    condition_expression=condition,
                    is_default=defaults.get(source) == flow.get("id"),
                )
            )
        return transitions

    def _compile_boundary_transitions(self, scope: ET.Element) -> List[Transition]:
        flows = _children(scope, "sequenceFlow")
        transitions = []
        for boundary in _children(scope, "boundaryEvent"):
            boundary_id = boundary.get("id")
            attached = boundary.get("attachedToRef")
            targets = [f.get("targetRef") for f in flows if f.get("sourceRef") == boundary_id]
            if not attached or not targets:
                logger.warning(
                    f"Boundary event '{boundary_id}' has no host or no outgoing flow; ignored"
                )
                continue
            target = targets[0]

            for definition in boundary:
                tag = _local(definition.tag)
                if tag == "errorEventDefinition":
                    code = self._lookup(self._definitions.errors, definition.get("errorRef"))
                    if code is None:
                        logger.warning(
                            f"Error boundary '{boundary_id}' has no resolvable error code; ignored"
                        )
                        continue
                    transitions.append(Transition(from_id=attached, to_id=target, error_code=code))
                elif tag == "signalEventDefinition":
                    signal = self._lookup(self._definitions.signals, definition.get("signalRef"))
                    if signal is None:
                        logger.warning(f"Signal boundary '{boundary_id}' has no signal; ignored")
                        continue
                    transitions.append(
                        Transition(from_id=attached, to_id=target, signal_name=signal)
                    )
                elif tag == "messageEventDefinition":
                    message = self._lookup(
                        self._definitions.messages, definition.get("messageRef")
                    )
                    if message is None:
                        logger.warning(f"Message boundary '{boundary_id}' has no message; ignored")
                        continue
                    transitions.append(
                        Transition(from_id=attached, to_id=target, message_name=message)
                    )
        return transitions

    @staticmethod
    def _lookup(table: Dict[str, str], ref: Optional[str]) -> Optional[str]:
        if not ref:
            return None
        return table.get(ref, ref)

    # ==================== Validation ====================

    def _validate(self, container: Container):
        """Check that every reachable non-gateway, non-end node advances unambiguously."""
        start = container.nodes.get(container.start_node_id)
        if not isinstance(start, StartNode):
            raise CompilationError(
                self._process_key,
                f"scope '{container.id}' has no start event '{container.start_node_id}'",
            )

        seen = set()
        stack = [container.start_node_id]
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                continue
            seen.add(node_id)

            node = container.nodes.get(node_id)
            if node is None:
                raise CompilationError(
                    self._process_key,
                    f"flow in '{container.id}' targets unknown or unsupported "
                    f"element '{node_id}'",
                )
            if not isinstance(node, GATEWAY_TYPES + (EndNode,)):
                count = len(container.normal_outgoing(node_id))
                if count != 1:
                    raise CompilationError(
                        self._process_key,
                        f"node '{node_id}' must have exactly one outgoing sequence flow "
                        f"(found {count})",
                    )
            if isinstance(node, SubProcessNode):
                self._validate(Container.of_sub_process(node))
            stack.extend(t.to_id for t in container.outgoing(node_id))
