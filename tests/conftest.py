# Shared fixtures for caseflow tests

import pytest

DEFINITIONS_TEMPLATE = """<bpmn:definitions xmlns:bpmn="http://www.omg.org/spec/BPMN/20100524/MODEL"
                  xmlns:camunda="http://camunda.org/schema/1.0/bpmn"
                  targetNamespace="http://example.org/">
    {extra}
    <bpmn:process id="{process_id}" isExecutable="true">
        {body}
    </bpmn:process>
</bpmn:definitions>"""


def make_bpmn(body: str, process_id: str = "orders", extra: str = "") -> str:
    """Wrap process contents in a BPMN definitions document."""
    return DEFINITIONS_TEMPLATE.format(process_id=process_id, body=body, extra=extra)


@pytest.fixture
def bpmn():
    return make_bpmn
