# Tests for the case service
# Verifies case lifecycle bookkeeping on top of the interpreter

import asyncio
import tempfile

import pytest

from caseflow.api.execution import CaseNotFound, CaseService
from caseflow.api.messaging import FunctionTaskHandler, TaskHandlerRegistry
from caseflow.api.storage import BaseStorageService, DefinitionRepository
from caseflow.config import Settings
from caseflow.errors import BusinessError, ConfigurationError, DefinitionNotFound

APPROVAL_BODY = """
    <bpmn:startEvent id="s"/>
    <bpmn:userTask id="approve"/>
    <bpmn:serviceTask id="notify"/>
    <bpmn:endEvent id="e"/>
    <bpmn:sequenceFlow id="f1" sourceRef="s" targetRef="approve"/>
    <bpmn:sequenceFlow id="f2" sourceRef="approve" targetRef="notify"/>
    <bpmn:sequenceFlow id="f3" sourceRef="notify" targetRef="e"/>
"""

CALLER_BODY = """
    <bpmn:startEvent id="s"/>
    <bpmn:callActivity id="call" calledElement="approval">
        <bpmn:extensionElements>
            <camunda:in source="amount" target="amount"/>
            <camunda:out source="ok" target="ok"/>
        </bpmn:extensionElements>
    </bpmn:callActivity>
    <bpmn:endEvent id="e"/>
    <bpmn:sequenceFlow id="f1" sourceRef="s" targetRef="call"/>
    <bpmn:sequenceFlow id="f2" sourceRef="call" targetRef="e"/>
"""


async def wait_for_status(service, instance_id, status, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while service.get_case(instance_id).status != status:
        if loop.time() > deadline:
            raise AssertionError(f"case never reached {status}")
        await asyncio.sleep(0.01)


async def wait_for_task(service, instance_id, task_id, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while service.get_state(instance_id)["pendingUserTaskId"] != task_id:
        if loop.time() > deadline:
            raise AssertionError(f"user task {task_id} never became pending")
        await asyncio.sleep(0.01)


@pytest.fixture
def definitions(bpmn):
    repository = DefinitionRepository(BaseStorageService(tempfile.mkdtemp()))
    repository.deploy("approval", bpmn(APPROVAL_BODY, process_id="approval"))
    repository.deploy("caller", bpmn(CALLER_BODY, process_id="caller"))
    return repository


def make_service(definitions, notify=None, settings=None):
    handler = notify or (lambda variables: {"notified": True})
    registry = TaskHandlerRegistry([FunctionTaskHandler("approval.notify", handler)])
    return CaseService(definitions, task_handlers=registry, settings=settings)


class TestCaseService:
    """Tests for starting, completing and terminating cases."""

    def test_case_runs_to_completion(self, definitions):
        service = make_service(definitions)

        async def scenario():
            instance_id = await service.start_case("approval", initial_vars={"amount": 5})
            assert instance_id.startswith("approval-1-")
            await wait_for_task(service, instance_id, "approve")
            assert service.get_case(instance_id).status == "RUNNING"

            assert service.complete_user_task(instance_id, "approve", {"ok": True}) is True
            await wait_for_status(service, instance_id, "COMPLETED")
            return service.get_case(instance_id)

        record = asyncio.run(scenario())
        assert record.ended_at is not None
        assert record.to_dict()["variables"] == {"amount": 5, "ok": True, "notified": True}

    def test_business_error_fails_case(self, definitions):
        def notify(variables):
            raise BusinessError("MAIL_DOWN", "mail server unavailable")

        service = make_service(definitions, notify)

        async def scenario():
            instance_id = await service.start_case("approval")
            await wait_for_task(service, instance_id, "approve")
            service.complete_user_task(instance_id, "approve", {})
            await wait_for_status(service, instance_id, "FAILED")
            return service.get_case(instance_id)

        record = asyncio.run(scenario())
        assert record.error_code == "MAIL_DOWN"
        assert record.error_message == "mail server unavailable"

    def test_terminate_running_case(self, definitions):
        service = make_service(definitions)

        async def scenario():
            instance_id = await service.start_case("approval")
            await wait_for_task(service, instance_id, "approve")
            service.terminate(instance_id, "customer withdrew")
            await asyncio.sleep(0.05)
            record = service.get_case(instance_id)
            assert record.task.done()
            # Terminating again leaves the record unchanged
            assert service.terminate(instance_id, "again").termination_reason == "customer withdrew"
            return record

        record = asyncio.run(scenario())
        assert record.status == "TERMINATED"
        assert record.termination_reason == "customer withdrew"

    def test_signals_and_queries(self, definitions):
        service = make_service(definitions)

        async def scenario():
            instance_id = await service.start_case("approval", version=1)
            await wait_for_task(service, instance_id, "approve")
            service.send_signal(instance_id, "nudge")
            service.send_message(instance_id, "note", {"text": "hi"})
            state = service.get_state(instance_id)
            info = service.get_user_task_info(instance_id, "approve")
            await service.shutdown()
            return state, info

        state, info = asyncio.run(scenario())
        assert state["pendingSignalCount"] == 1
        assert state["pendingMessageCount"] == 1
        assert info["taskId"] == "approve"

    def test_unknown_definition_and_case(self, definitions):
        service = make_service(definitions)

        with pytest.raises(DefinitionNotFound):
            asyncio.run(service.start_case("missing"))
        with pytest.raises(DefinitionNotFound):
            asyncio.run(service.start_case("approval", version=9))
        with pytest.raises(CaseNotFound):
            service.get_case("nope")
        with pytest.raises(CaseNotFound):
            service.complete_user_task("nope", "approve")

    def test_shutdown_cancels_running_cases(self, definitions):
        service = make_service(definitions)

        async def scenario():
            instance_id = await service.start_case("approval")
            await wait_for_task(service, instance_id, "approve")
            await service.shutdown()
            return service.get_case(instance_id)

        assert asyncio.run(scenario()).status == "TERMINATED"


class TestCalledCases:
    """Tests for call activities registered as their own cases."""

    @pytest.fixture
    def service(self, definitions):
        return make_service(definitions)

    @staticmethod
    def called_case(service, parent_id):
        return next(r for r in service.list_cases() if r.parent_instance_id == parent_id)

    def test_called_case_user_task_completes_through_caller(self, service):
        async def scenario():
            parent_id = await service.start_case("caller", initial_vars={"amount": 5})
            await wait_for_task(service, parent_id, "approve")

            child = self.called_case(service, parent_id)
            assert child.instance_id.startswith("approval-1-")
            assert service.get_state(parent_id)["activeChildIds"] == [child.instance_id]
            assert service.get_state(child.instance_id)["pendingUserTaskId"] == "approve"
            assert service.get_user_task_info(parent_id, "approve")["taskId"] == "approve"

            service.send_signal(child.instance_id, "nudge")
            assert service.get_state(child.instance_id)["pendingSignalCount"] == 1
            assert service.get_state(parent_id)["pendingSignalCount"] == 0

            assert service.complete_user_task(parent_id, "approve", {"ok": True}) is True
            await wait_for_status(service, parent_id, "COMPLETED")
            return service.get_case(parent_id), service.get_case(child.instance_id)

        parent, child = asyncio.run(scenario())
        assert child.status == "COMPLETED"
        assert child.to_dict()["parentInstanceId"] == parent.instance_id
        assert child.to_dict()["variables"] == {"amount": 5, "ok": True, "notified": True}
        assert parent.to_dict()["variables"] == {"amount": 5, "ok": True}

    def test_called_case_completes_by_its_own_id(self, service):
        async def scenario():
            parent_id = await service.start_case("caller", initial_vars={"amount": 1})
            await wait_for_task(service, parent_id, "approve")
            child_id = self.called_case(service, parent_id).instance_id
            assert service.complete_user_task(child_id, "approve", {"ok": False}) is True
            await wait_for_status(service, parent_id, "COMPLETED")
            return service.get_case(parent_id)

        assert asyncio.run(scenario()).to_dict()["variables"] == {"amount": 1, "ok": False}

    def test_terminating_called_case_terminates_caller(self, service):
        async def scenario():
            parent_id = await service.start_case("caller")
            await wait_for_task(service, parent_id, "approve")
            child_id = self.called_case(service, parent_id).instance_id

            service.terminate(child_id, "withdrawn")
            await asyncio.sleep(0.05)
            return service.get_case(parent_id), service.get_case(child_id)

        parent, child = asyncio.run(scenario())
        assert parent.status == "TERMINATED"
        assert parent.termination_reason == "withdrawn"
        assert parent.task.done()
        assert child.status == "TERMINATED"
        assert child.interpreter is None


class TestCaseSelection:
    """Tests for finding and bulk terminating cases."""

    @pytest.fixture
    def service(self, definitions):
        return make_service(definitions)

    async def start_waiting(self, service, count):
        instance_ids = []
        for _ in range(count):
            instance_id = await service.start_case("approval")
            await wait_for_task(service, instance_id, "approve")
            instance_ids.append(instance_id)
        return instance_ids

    def test_find_latest(self, service):
        async def scenario():
            instance_ids = await self.start_waiting(service, 2)
            found = service.find_latest("approval", 1).instance_id
            await service.shutdown()
            return instance_ids, found

        instance_ids, found = asyncio.run(scenario())
        assert found == instance_ids[-1]
        with pytest.raises(CaseNotFound):
            service.find_latest("approval", 2)

    def test_terminate_by_key_and_version(self, service):
        async def scenario():
            instance_ids = await self.start_waiting(service, 2)
            terminated = service.terminate_matching(
                process_key="approval", version=1, reason="cleanup"
            )
            await asyncio.sleep(0.05)
            with pytest.raises(CaseNotFound):
                service.terminate_matching(process_key="approval", version=1)
            return instance_ids, terminated

        instance_ids, terminated = asyncio.run(scenario())
        assert [r.instance_id for r in terminated] == instance_ids
        assert {r.status for r in terminated} == {"TERMINATED"}
        assert {r.termination_reason for r in terminated} == {"cleanup"}

    def test_terminate_all_running(self, service):
        async def scenario():
            await self.start_waiting(service, 1)
            first = service.terminate_matching(all_running=True)
            await asyncio.sleep(0.05)
            return first, service.terminate_matching(all_running=True)

        first, second = asyncio.run(scenario())
        assert len(first) == 1
        assert first[0].termination_reason == "Terminated by request"
        assert second == []

    @pytest.mark.parametrize(
        "selector",
        [
            {},
            {"process_key": "approval"},
            {"all_running": True, "process_key": "approval", "version": 1},
            {"all_running": True, "instance_id": "approval-1-x"},
        ],
    )
    def test_invalid_selectors_are_rejected(self, service, selector):
        with pytest.raises(ConfigurationError):
            service.terminate_matching(**selector)


class TestRetention:
    """Tests for releasing and forgetting ended cases."""

    def test_ended_case_keeps_snapshot_only(self, definitions):
        service = make_service(definitions, settings=Settings(finished_case_retention=1))

        async def run_one():
            instance_id = await service.start_case("approval")
            await wait_for_task(service, instance_id, "approve")
            service.complete_user_task(instance_id, "approve", {"ok": True})
            await wait_for_status(service, instance_id, "COMPLETED")
            return instance_id

        async def scenario():
            first = await run_one()
            record = service.get_case(first)
            assert record.interpreter is None
            assert record.to_dict()["variables"] == {"ok": True, "notified": True}
            assert service.get_state(first)["status"] == "COMPLETED"
            assert service.get_user_task_info(first, "approve")["taskId"] == "approve"
            assert service.complete_user_task(first, "approve") is False
            service.send_signal(first, "late")

            second = await run_one()
            return first, second

        first, second = asyncio.run(scenario())
        with pytest.raises(CaseNotFound):
            service.get_case(first)
        assert service.get_case(second).status == "COMPLETED"
