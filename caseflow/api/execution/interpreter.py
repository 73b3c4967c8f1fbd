# Process Interpreter for caseflow
# Runs one process instance over a compiled graph

import asyncio
import logging
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from caseflow.api.execution.error_handler import ErrorHandler
from caseflow.api.execution.gateway_evaluator import GatewayEvaluator
from caseflow.api.execution.substrate import ExecutionSubstrate
from caseflow.config import Settings
from caseflow.core.durations import parse_duration
from caseflow.core.model import (
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
    UserTaskNode,
    VariableMapping,
)
from caseflow.errors import BusinessError, ConfigurationError
from caseflow.expression import ExpressionEvaluator

logger = logging.getLogger(__name__)

STATUS_RUNNING = "RUNNING"
STATUS_WAITING_USER_TASK = "WAITING_USER_TASK"


def describe_user_task(process: CompiledProcess, task_id: str) -> Optional[Dict[str, Any]]:
    """Display metadata of a user task, searching nested containers, or None."""
    for node in process.iter_nodes():
        if isinstance(node, UserTaskNode) and node.id == task_id:
            return {
                "taskId": node.id,
                "name": node.name,
                "formKey": node.form_key,
                "assigneeRole": node.assignee_role,
                "formFields": [f.model_dump(by_alias=True) for f in node.form_fields],
            }
    return None


class _InstanceTerminated(Exception):
    """Raised by a terminate end event to stop every loop of the instance."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Instance terminated at '{node_id}'")


class ProcessInterpreter:
    """
    State machine for one process instance.

    One execution loop runs per container: the top-level process, each
    SubProcess node, each parallel branch and each event subprocess body. All
    loops share the instance's variable dict, the pending user task slot and
    the signal/message queues. The dict is shared without locking, so
    concurrent writes are unordered and the last write wins.

    Every suspension goes through the ExecutionSubstrate. Code outside the
    substrate's event loop must not call the signal methods directly.
    """

    def __init__(
        self,
        process: CompiledProcess,
        substrate: ExecutionSubstrate,
        task_handlers,
        script_runner=None,
        definitions=None,
        evaluator: Optional[ExpressionEvaluator] = None,
        settings: Optional[Settings] = None,
        instance_id: Optional[str] = None,
        child_observer=None,
    ):
        """
        Initialize the interpreter.

        Args:
            process: The compiled process to run
            substrate: Scheduling primitives
            task_handlers: Registry executing service task handlers
            script_runner: Collaborator executing script tasks
            definitions: Definition store used by call activities (``latest``)
            evaluator: Expression evaluator for gateway conditions
            settings: Timeouts and event delivery settings
            instance_id: Id the instance is addressed by, if registered
            child_observer: Notified through ``child_started(parent, child)`` and
                ``child_finished(child, error)`` around every called process
        """
        self.process = process
        self.substrate = substrate
        self.task_handlers = task_handlers
        self.script_runner = script_runner
        self.definitions = definitions
        self.evaluator = evaluator or ExpressionEvaluator()
        self.settings = settings or Settings()
        self.instance_id = instance_id
        self.child_observer = child_observer

        self.gateways = GatewayEvaluator(self.evaluator)
        self.errors = ErrorHandler()

        self.variables: Dict[str, Any] = {}
        self.current_node_id: Optional[str] = None
        self.pending_user_task_id: Optional[str] = None
        self.user_task_payload: Optional[Dict[str, Any]] = None
        self.pending_signals: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self.pending_messages: Deque[Tuple[str, Dict[str, Any]]] = deque()
        self.children: List["ProcessInterpreter"] = []
        self._waiting_boundaries: List[Transition] = []

        self._dispatch = {
            StartNode: self._on_start,
            EndNode: self._on_end,
            UserTaskNode: self._on_user_task,
            ServiceTaskNode: self._on_service_task,
            ScriptTaskNode: self._on_script_task,
            ExclusiveGatewayNode: self._on_exclusive_gateway,
            ParallelGatewayNode: self._on_parallel_gateway,
            CallActivityNode: self._on_call_activity,
            TimerBoundaryNode: self._on_timer,
            SubProcessNode: self._on_sub_process,
        }

    # ==================== Instance Lifecycle ====================

    async def run(self, initial_variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Run the instance until the top-level process ends.

        Event subprocess listeners start with the instance and are cancelled
        when it ends. A failing listener fails the instance.

        Returns:
            The final variable context

        Raises:
            BusinessError: An unhandled business error
            ConfigurationError: A deployment defect met at run time
        """
        if initial_variables:
            self.variables.update(initial_variables)

        key, version = self.process.process_key, self.process.version
        logger.info(f"Starting instance of '{key}' v{version}")

        container = Container.of_process(self.process)
        main = self.substrate.spawn(self._run_container(container, container.start_node_id))
        listeners = [self.substrate.spawn(self._listen(esp)) for esp in self.process.event_subprocesses]
        tasks = [main] + listeners

        try:
            await self.substrate.await_until(lambda: any(t.done() for t in tasks))
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception() is not None:
                    raise task.exception()
            logger.info(f"Instance of '{key}' v{version} completed")
        except _InstanceTerminated as e:
            logger.info(f"Instance of '{key}' v{version} ended by terminate end event '{e.node_id}'")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        return self.variables

    # ==================== Queries ====================

    def get_state(self) -> Dict[str, Any]:
        """
        Snapshot of the instance.

        A user task pending in an active called process is reported as the
        instance's own pending task.
        """
        owner = self._task_owner() or self
        waiting = owner.pending_user_task_id is not None and owner.user_task_payload is None
        return {
            "status": STATUS_WAITING_USER_TASK if waiting else STATUS_RUNNING,
            "currentNodeId": self.current_node_id,
            "pendingUserTaskId": owner.pending_user_task_id,
            "pendingSignalCount": len(self.pending_signals),
            "pendingMessageCount": len(self.pending_messages),
            "activeChildIds": [c.instance_id for c in self.children if c.instance_id],
        }

    def get_user_task_info(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Display metadata of a user task anywhere in the process or an active child, or None."""
        info = describe_user_task(self.process, task_id)
        if info is not None:
            return info
        for child in list(self.children):
            info = child.get_user_task_info(task_id)
            if info is not None:
                return info
        return None

    def _task_owner(self) -> Optional["ProcessInterpreter"]:
        if self.pending_user_task_id is not None:
            return self
        for child in list(self.children):
            owner = child._task_owner()
            if owner is not None:
                return owner
        return None

    def _find_waiting_task(self, task_id: str) -> Optional["ProcessInterpreter"]:
        if self.pending_user_task_id == task_id and self.user_task_payload is None:
            return self
        for child in list(self.children):
            owner = child._find_waiting_task(task_id)
            if owner is not None:
                return owner
        return None

    # ==================== Signals ====================

    def complete_user_task(self, task_id: str, payload: Optional[Mapping[str, Any]] = None) -> bool:
        """
        Deliver the completion payload of the pending user task.

        The task may be pending in this instance or in any called process it
        is waiting on.

        Returns:
            True if accepted; False (and no effect) when ``task_id`` is not a
            pending task or the task was already completed
        """
        owner = self._find_waiting_task(task_id)
        if owner is None:
            logger.info(
                f"Ignoring completion of '{task_id}' "
                f"(pending: {self.get_state()['pendingUserTaskId']})"
            )
            return False
        owner.user_task_payload = dict(payload or {})
        self.substrate.notify()
        return True

    def receive_signal(self, name: str, payload: Optional[Mapping[str, Any]] = None) -> None:
        self.pending_signals.append((name, dict(payload or {})))
        self.substrate.notify()

    def receive_message(self, name: str, payload: Optional[Mapping[str, Any]] = None) -> None:
        self.pending_messages.append((name, dict(payload or {})))
        self.substrate.notify()

    # ==================== Execution Loop ====================

    async def _run_container(
        self, container: Container, start_id: str, branch: bool = False
    ) -> Optional[str]:
        """
        Run nodes of one container from ``start_id`` until an end event.

        A parallel branch (``branch=True``) stops when it reaches a join
        gateway and returns the join id; otherwise returns None.
        """
        node_id: Optional[str] = start_id
        while node_id is not None:
            node = container.node(node_id)
            if branch and self.gateways.is_join(container, node):
                logger.debug(f"Branch reached join '{node_id}' in '{container.id}'")
                return node_id

            self.current_node_id = node_id
            logger.debug(f"Executing {type(node).__name__} '{node_id}' in '{container.id}'")
            handler = self._dispatch.get(type(node))
            if handler is None:
                raise ConfigurationError(f"Unsupported node type {type(node).__name__}")
            node_id = await handler(container, node)
        return None

    async def _on_start(self, container: Container, node: StartNode) -> Optional[str]:
        return container.next_sequence(node.id)

    async def _on_end(self, container: Container, node: EndNode) -> Optional[str]:
        if node.terminate:
            raise _InstanceTerminated(node.id)
        return None

    async def _on_user_task(self, container: Container, node: UserTaskNode) -> Optional[str]:
        # At most one pending user task per instance
        await self.substrate.await_until(lambda: self.pending_user_task_id is None)
        self.pending_user_task_id = node.id
        self.user_task_payload = None
        self.substrate.notify()
        logger.info(f"Waiting for user task '{node.id}'")

        # Signal and message boundaries of the waiting task outrank event subprocesses
        self._waiting_boundaries = [
            t for t in container.outgoing(node.id)
            if t.signal_name is not None or t.message_name is not None
        ]
        try:
            await self.substrate.await_until(
                lambda: self.user_task_payload is not None or self._boundary_event() is not None
            )
            if self.user_task_payload is None:
                return self._take_boundary_event(node.id)
            self.variables.update(self.user_task_payload)
            logger.info(f"User task '{node.id}' completed")
        finally:
            self._waiting_boundaries = []
            self.pending_user_task_id = None
            self.user_task_payload = None
            self.substrate.notify()

        return container.next_sequence(node.id)

    def _boundary_event(self) -> Optional[Tuple[Deque, int, Transition]]:
        """Oldest queued signal or message caught by a boundary of the waiting task."""
        for queue in (self.pending_signals, self.pending_messages):
            for index, (name, _) in enumerate(queue):
                transition = self._boundary_for(queue, name)
                if transition is not None:
                    return queue, index, transition
        return None

    def _boundary_for(self, queue: Deque, name: str) -> Optional[Transition]:
        for transition in self._waiting_boundaries:
            caught = transition.signal_name if queue is self.pending_signals else transition.message_name
            if caught is not None and caught == name:
                return transition
        return None

    def _take_boundary_event(self, node_id: str) -> str:
        queue, index, transition = self._boundary_event()
        name, payload = queue[index]
        del queue[index]
        self.variables.update(payload)
        logger.info(
            f"Event {name!r} interrupted user task '{node_id}', "
            f"continuing at '{transition.to_id}'"
        )
        return transition.to_id

    async def _on_service_task(self, container: Container, node: ServiceTaskNode) -> Optional[str]:
        return await self._call_task(
            container,
            node,
            self.task_handlers.execute,
            node.handler_key,
            timeout=self.settings.task_timeout_seconds,
        )

    async def _on_script_task(self, container: Container, node: ScriptTaskNode) -> Optional[str]:
        if (node.script_format or "").strip().lower() != "python":
            raise ConfigurationError(
                f"Script task '{node.id}': unsupported script format '{node.script_format}'"
            )
        if self.script_runner is None:
            raise ConfigurationError(f"Script task '{node.id}': no script runner configured")
        return await self._call_task(
            container,
            node,
            self._run_script,
            node,
            timeout=self.settings.script_timeout_seconds,
        )

    def _run_script(self, node: ScriptTaskNode, variables: Dict[str, Any]) -> Dict[str, Any]:
        return self.script_runner.run(node.script, node.script_format, variables, node.handler_key)

    async def _call_task(self, container, node, fn, target, timeout: float) -> Optional[str]:
        snapshot = dict(self.variables)
        logger.info(f"Executing task '{node.id}'")
        try:
            result = await self.substrate.call_activity(fn, target, snapshot, timeout=timeout)
        except BusinessError as e:
            return self.errors.handle_business_error(container, node.id, e)
        self._merge_changes(snapshot, result)
        return container.next_sequence(node.id)

    def _merge_changes(self, snapshot: Mapping[str, Any], result: Mapping[str, Any]) -> None:
        # Only keys the task touched, so concurrent branch writes survive
        for name, value in result.items():
            if name not in snapshot or snapshot[name] is not value:
                self.variables[name] = value

    async def _on_exclusive_gateway(
        self, container: Container, node: ExclusiveGatewayNode
    ) -> Optional[str]:
        return self.gateways.select_exclusive(container, node.id, self.variables).to_id

    async def _on_parallel_gateway(
        self, container: Container, node: ParallelGatewayNode
    ) -> Optional[str]:
        outgoing = container.normal_outgoing(node.id)
        if not outgoing:
            raise ConfigurationError(f"Parallel gateway '{node.id}' has no outgoing transitions")
        if len(outgoing) == 1:
            return outgoing[0].to_id
        return await self._split(container, node.id, outgoing)

    async def _split(self, container: Container, split_id: str, outgoing) -> Optional[str]:
        logger.debug(f"Parallel split '{split_id}' into {len(outgoing)} branches")
        branches = [
            self.substrate.spawn(self._run_container(container, t.to_id, branch=True))
            for t in outgoing
        ]

        def failed(b) -> bool:
            return b.done() and not b.cancelled() and b.exception() is not None

        try:
            await self.substrate.await_until(
                lambda: all(b.done() for b in branches) or any(failed(b) for b in branches)
            )
        finally:
            for branch in branches:
                if not branch.done():
                    branch.cancel()

        for branch in branches:
            if failed(branch):
                raise branch.exception()
        if any(b.cancelled() for b in branches):
            raise asyncio.CancelledError()

        joins = [b.result() for b in branches if b.result() is not None]
        join_id = joins[0] if joins else self.gateways.find_join(container, split_id)
        if join_id is None:
            logger.debug(f"Branches of '{split_id}' ended without a join")
            return None

        logger.debug(f"All branches of '{split_id}' joined at '{join_id}'")
        self.current_node_id = join_id
        after_join = container.normal_outgoing(join_id)
        if len(after_join) > 1:
            # The join doubles as the next split
            return await self._split(container, join_id, after_join)
        return container.next_sequence(join_id)

    async def _on_call_activity(self, container: Container, node: CallActivityNode) -> Optional[str]:
        if self.definitions is None:
            raise ConfigurationError(f"Call activity '{node.id}': no definition store configured")

        child_variables = self._apply_mappings(node.in_mappings, self.variables, {})
        definition = await self.substrate.call_activity(
            self.definitions.latest,
            node.called_process_key,
            timeout=self.settings.lookup_timeout_seconds,
        )
        logger.info(
            f"Call activity '{node.id}' starting '{definition.process_key}' v{definition.version}"
        )
        try:
            result = await self.substrate.run_child(
                self._run_child,
                definition,
                child_variables,
                timeout=self.settings.child_timeout_seconds,
            )
        except BusinessError as e:
            return self.errors.handle_business_error(container, node.id, e)

        self._apply_mappings(node.out_mappings, result, self.variables)
        return container.next_sequence(node.id)

    async def _run_child(self, definition: CompiledProcess, variables: Dict[str, Any]) -> Dict[str, Any]:
        child = ProcessInterpreter(
            definition,
            self.substrate,
            self.task_handlers,
            script_runner=self.script_runner,
            definitions=self.definitions,
            evaluator=self.evaluator,
            settings=self.settings,
            child_observer=self.child_observer,
        )
        self.children.append(child)
        if self.child_observer is not None:
            self.child_observer.child_started(self, child)

        error: Optional[BaseException] = None
        try:
            return await child.run(variables)
        except BaseException as e:
            error = e
            raise
        finally:
            self.children.remove(child)
            if self.child_observer is not None:
                self.child_observer.child_finished(child, error)

    @staticmethod
    def _apply_mappings(
        mappings: Sequence[VariableMapping],
        source: Mapping[str, Any],
        target: Dict[str, Any],
    ) -> Dict[str, Any]:
        for mapping in mappings:
            if mapping.all_variables:
                target.update(source)
            elif mapping.source:
                target[mapping.target or mapping.source] = source.get(mapping.source)
        return target

    async def _on_timer(self, container: Container, node: TimerBoundaryNode) -> Optional[str]:
        duration = self._resolve_duration(node.duration_expression, node.id)
        logger.info(f"Timer '{node.id}' waiting {duration}")
        await self.substrate.sleep(duration)
        return container.next_sequence(node.id)

    def _resolve_duration(self, expression: Optional[str], node_id: str) -> timedelta:
        """Literal ISO-8601 text, or ``${name}`` holding a timedelta or ISO-8601 text."""
        text = (expression or "").strip()
        if text.startswith("${") and text.endswith("}"):
            name = text[2:-1].strip()
            value = self.variables.get(name)
            if isinstance(value, timedelta):
                return value
            if not isinstance(value, str):
                raise ConfigurationError(
                    f"Timer '{node_id}': variable '{name}' holds no duration ({value!r})"
                )
            text = value
        try:
            return parse_duration(text)
        except ValueError as e:
            raise ConfigurationError(f"Timer '{node_id}': {e}") from e

    async def _on_sub_process(self, container: Container, node: SubProcessNode) -> Optional[str]:
        inner = Container.of_sub_process(node)
        try:
            await self._run_container(inner, inner.start_node_id)
        except BusinessError as e:
            return self.errors.handle_business_error(container, node.id, e)
        return container.next_sequence(node.id)

    # ==================== Event Subprocesses ====================

    async def _listen(self, esp: EventSubprocess) -> None:
        """Background loop of one event subprocess, for the instance's lifetime."""
        container = Container.of_event_subprocess(esp)
        interval = self._timer_interval(esp) if esp.start_event_type == EventStartType.TIMER else None

        while True:
            if interval is not None:
                await self.substrate.sleep(interval)
                logger.info(f"Timer event subprocess '{esp.id}' fired")
            else:
                queue = (
                    self.pending_signals
                    if esp.start_event_type == EventStartType.SIGNAL
                    else self.pending_messages
                )
                await self.substrate.await_until(lambda: self._has_event(queue, esp))
                name, payload = self._pop_event(queue, esp)
                logger.info(f"Event subprocess '{esp.id}' consumed {name!r}")
                self.variables.update(payload)
                self.substrate.notify()

            await self._run_container(container, container.start_node_id)

    def _timer_interval(self, esp: EventSubprocess) -> timedelta:
        default = timedelta(seconds=self.settings.timer_event_interval_seconds)
        if not esp.timer_expression:
            return default
        try:
            interval = self._resolve_duration(esp.timer_expression, esp.id)
        except ConfigurationError as e:
            logger.warning(f"{e}; using the default interval of {default}")
            return default
        return interval if interval > timedelta(0) else default

    def _deliverable(self, queue: Deque, esp: EventSubprocess):
        # Oldest entry regardless of name unless name filtering is enabled
        for index, (name, _) in enumerate(queue):
            if self._boundary_for(queue, name) is not None:
                continue
            if self.settings.event_name_filter and name != esp.trigger_name:
                continue
            return index
        return None

    def _has_event(self, queue: Deque, esp: EventSubprocess) -> bool:
        return self._deliverable(queue, esp) is not None

    def _pop_event(self, queue: Deque, esp: EventSubprocess) -> Tuple[str, Dict[str, Any]]:
        index = self._deliverable(queue, esp)
        if index is None:
            raise LookupError(f"No deliverable event for {esp.id!r}")
        entry = queue[index]
        del queue[index]
        return entry
