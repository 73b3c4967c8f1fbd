# Case Service for caseflow
# Starts, signals, queries and terminates process instances

import uuid
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from caseflow.api.execution.interpreter import ProcessInterpreter, describe_user_task
from caseflow.api.execution.substrate import AsyncioSubstrate, ExecutionSubstrate
from caseflow.api.messaging import ScriptRunner, TaskHandlerRegistry, load_handler_modules
from caseflow.config import Settings
from caseflow.core.model import CompiledProcess
from caseflow.errors import BusinessError, CaseflowError, ConfigurationError

logger = logging.getLogger(__name__)

RUNNING = "RUNNING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
TERMINATED = "TERMINATED"


class CaseNotFound(CaseflowError):
    """No case exists with the requested instance id."""


@dataclass
class CaseRecord:
    """
    Lifecycle record of one process instance.

    A called process gets its own record linked to the calling case through
    ``parent_instance_id``. The interpreter is released when the case ends;
    its final variables stay on the record.
    """

    instance_id: str
    process_key: str
    version: int
    definition: CompiledProcess
    interpreter: Optional[ProcessInterpreter]
    status: str = RUNNING
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    ended_at: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    termination_reason: Optional[str] = None
    parent_instance_id: Optional[str] = None
    variables: Dict[str, Any] = field(default_factory=dict)
    task: Optional["asyncio.Task"] = None

    def current_variables(self) -> Dict[str, Any]:
        if self.interpreter is not None:
            return dict(self.interpreter.variables)
        return dict(self.variables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "processKey": self.process_key,
            "version": self.version,
            "status": self.status,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "terminationReason": self.termination_reason,
            "parentInstanceId": self.parent_instance_id,
            "variables": self.current_variables(),
        }


class CaseService:
    """
    Boundary API over running process instances.

    Instances run as asyncio tasks on the caller's event loop, so every
    method must be called from that loop (FastAPI ``async def`` endpoints).
    At most ``finished_case_retention`` ended cases are kept; older ones are
    forgotten first.
    """

    def __init__(
        self,
        definitions,
        task_handlers: Optional[TaskHandlerRegistry] = None,
        script_runner: Optional[ScriptRunner] = None,
        substrate: Optional[ExecutionSubstrate] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the case service.

        Args:
            definitions: Definition store (``latest``/``by_version``)
            task_handlers: Registry of service task handlers
            script_runner: Script task collaborator
            substrate: Execution substrate shared by all instances
            settings: Runtime settings
        """
        self.definitions = definitions
        self.settings = settings or Settings()
        self.task_handlers = task_handlers or TaskHandlerRegistry()
        self.script_runner = script_runner or ScriptRunner()
        self.substrate = substrate or AsyncioSubstrate()
        self._cases: Dict[str, CaseRecord] = {}

    @classmethod
    def from_settings(cls, definitions, settings: Settings) -> "CaseService":
        """Build a service whose handlers come from CASEFLOW_HANDLER_MODULES."""
        registry = TaskHandlerRegistry(load_handler_modules(settings.handler_modules))
        return cls(definitions, task_handlers=registry, settings=settings)

    # ==================== Lifecycle ====================

    async def start_case(
        self,
        process_key: str,
        version: Optional[int] = None,
        initial_vars: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Start a new case.

        Args:
            process_key: Deployed process key
            version: Specific version, or the latest active one when None
            initial_vars: Seed variables

        Returns:
            The instance id ``{key}-{version}-{uuid}``

        Raises:
            DefinitionNotFound: If the key/version is not deployed
        """
        if version is None:
            definition = self.definitions.latest(process_key)
        else:
            definition = self.definitions.by_version(process_key, version)

        instance_id = self._new_instance_id(process_key, definition.version)
        interpreter = ProcessInterpreter(
            definition,
            self.substrate,
            self.task_handlers,
            script_runner=self.script_runner,
            definitions=self.definitions,
            settings=self.settings,
            instance_id=instance_id,
            child_observer=self,
        )
        record = CaseRecord(
            instance_id=instance_id,
            process_key=process_key,
            version=definition.version,
            definition=definition,
            interpreter=interpreter,
        )
        self._cases[instance_id] = record
        record.task = asyncio.create_task(self._drive(record, dict(initial_vars or {})))

        logger.info(f"Started case {instance_id}")
        return instance_id

    @staticmethod
    def _new_instance_id(process_key: str, version: int) -> str:
        return f"{process_key}-{version}-{uuid.uuid4()}"

    async def _drive(self, record: CaseRecord, initial_vars: Dict[str, Any]) -> None:
        error: Optional[BaseException] = None
        try:
            await record.interpreter.run(initial_vars)
        except asyncio.CancelledError as e:
            error = e
            raise
        except Exception as e:
            error = e
        finally:
            self._finish(record, error)

    def _finish(self, record: CaseRecord, error: Optional[BaseException]) -> None:
        """Record how a case ended and release its interpreter."""
        if isinstance(error, asyncio.CancelledError):
            record.status = TERMINATED
        elif isinstance(error, BusinessError):
            record.status = FAILED
            record.error_code = error.error_code
            record.error_message = error.message
            logger.error(f"Case {record.instance_id} failed with business error {error.error_code}")
        elif error is not None:
            record.status = FAILED
            record.error_message = str(error) or type(error).__name__
            logger.error(f"Case {record.instance_id} failed: {record.error_message}", exc_info=error)
        else:
            record.status = COMPLETED
            logger.info(f"Case {record.instance_id} completed")

        record.ended_at = datetime.now().isoformat()
        if record.interpreter is not None:
            record.variables = dict(record.interpreter.variables)
            record.interpreter = None
        self._evict_finished()

    def _evict_finished(self) -> None:
        finished = [r.instance_id for r in self._cases.values() if r.status != RUNNING]
        excess = len(finished) - self.settings.finished_case_retention
        for instance_id in finished[:max(excess, 0)]:
            del self._cases[instance_id]
            logger.debug(f"Forgot ended case {instance_id}")

    # ==================== Called Processes ====================

    def child_started(self, parent: ProcessInterpreter, child: ProcessInterpreter) -> None:
        """Register a called process as its own case linked to the caller."""
        definition = child.process
        child.instance_id = self._new_instance_id(definition.process_key, definition.version)
        self._cases[child.instance_id] = CaseRecord(
            instance_id=child.instance_id,
            process_key=definition.process_key,
            version=definition.version,
            definition=definition,
            interpreter=child,
            parent_instance_id=parent.instance_id,
        )
        logger.info(f"Started called case {child.instance_id} (parent {parent.instance_id})")

    def child_finished(self, child: ProcessInterpreter, error: Optional[BaseException]) -> None:
        record = self._cases.get(child.instance_id)
        if record is not None and record.interpreter is child:
            self._finish(record, error)

    def _root(self, record: CaseRecord) -> CaseRecord:
        while record.parent_instance_id is not None and record.parent_instance_id in self._cases:
            record = self._cases[record.parent_instance_id]
        return record

    # ==================== Termination ====================

    def terminate(self, instance_id: str, reason: Optional[str] = None) -> CaseRecord:
        """
        Terminate a running case abruptly; no cleanup hooks run.

        Terminating a called case terminates the whole call chain from its
        root case. Terminating a case that already ended leaves it unchanged.
        """
        record = self.get_case(instance_id)
        if record.status != RUNNING:
            logger.info(f"Case {instance_id} already {record.status}, not terminating")
            return record

        root = self._root(record)
        for target in ([record] if root is record else [record, root]):
            target.status = TERMINATED
            target.termination_reason = reason
            target.ended_at = datetime.now().isoformat()
        if root.task is not None:
            root.task.cancel()
        logger.info(f"Terminated case {root.instance_id}: {reason or 'no reason given'}")
        return record

    def terminate_matching(
        self,
        instance_id: Optional[str] = None,
        process_key: Optional[str] = None,
        version: Optional[int] = None,
        all_running: bool = False,
        reason: Optional[str] = None,
    ) -> List[CaseRecord]:
        """
        Terminate one case, every running case of a key and version, or every running case.

        Returns:
            The terminated records, in start order

        Raises:
            ConfigurationError: If the selector combination is invalid
            CaseNotFound: If a key and version match no running case
        """
        if all_running:
            if instance_id or process_key:
                raise ConfigurationError("allRunning cannot be combined with instanceId or processKey")
        elif not instance_id and not process_key:
            raise ConfigurationError("Either instanceId or processKey must be provided")
        if process_key and version is None:
            raise ConfigurationError("version is required when using processKey")

        reason = reason or "Terminated by request"
        if instance_id and not all_running:
            return [self.terminate(instance_id, reason)]

        targets = [
            r for r in self._cases.values()
            if r.status == RUNNING
            and (all_running or (r.process_key == process_key and r.version == version))
        ]
        if not targets and not all_running:
            raise CaseNotFound(
                f"No running cases found for processKey={process_key} and version={version}"
            )
        return [self.terminate(r.instance_id, reason) for r in targets]

    async def shutdown(self) -> None:
        """Cancel every running case."""
        running = [r.task for r in self._cases.values() if r.task is not None and not r.task.done()]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        logger.info(f"Case service stopped ({len(running)} running cases cancelled)")

    # ==================== Signals ====================

    def complete_user_task(
        self, instance_id: str, task_id: str, payload: Optional[Mapping[str, Any]] = None
    ) -> bool:
        interpreter = self.get_case(instance_id).interpreter
        if interpreter is None:
            logger.info(f"Ignoring completion of '{task_id}': case {instance_id} has ended")
            return False
        return interpreter.complete_user_task(task_id, payload)

    def send_signal(
        self, instance_id: str, name: str, payload: Optional[Mapping[str, Any]] = None
    ) -> None:
        interpreter = self.get_case(instance_id).interpreter
        if interpreter is None:
            logger.info(f"Dropping signal {name!r}: case {instance_id} has ended")
            return
        interpreter.receive_signal(name, payload)

    def send_message(
        self, instance_id: str, name: str, payload: Optional[Mapping[str, Any]] = None
    ) -> None:
        interpreter = self.get_case(instance_id).interpreter
        if interpreter is None:
            logger.info(f"Dropping message {name!r}: case {instance_id} has ended")
            return
        interpreter.receive_message(name, payload)

    # ==================== Queries ====================

    def get_case(self, instance_id: str) -> CaseRecord:
        record = self._cases.get(instance_id)
        if record is None:
            raise CaseNotFound(f"Case not found: {instance_id}")
        return record

    def list_cases(self) -> List[CaseRecord]:
        return list(self._cases.values())

    def find_latest(self, process_key: str, version: int) -> CaseRecord:
        """
        The most recently started case of a key and version, running or not.

        Raises:
            CaseNotFound: If no such case is known
        """
        matches = [
            r for r in self._cases.values()
            if r.process_key == process_key and r.version == version
        ]
        if not matches:
            raise CaseNotFound(
                f"No cases found for processKey={process_key} and version={version}"
            )
        return matches[-1]

    def get_state(self, instance_id: str) -> Dict[str, Any]:
        record = self.get_case(instance_id)
        if record.interpreter is None:
            return {"status": record.status, "currentNodeId": None, "pendingUserTaskId": None}
        return record.interpreter.get_state()

    def get_user_task_info(self, instance_id: str, task_id: str) -> Optional[Dict[str, Any]]:
        record = self.get_case(instance_id)
        if record.interpreter is None:
            return describe_user_task(record.definition, task_id)
        return record.interpreter.get_user_task_info(task_id)
