# Conversion Package for caseflow
# BPMN XML compilation and compiled-process serialization

from .bpmn_compiler import BpmnCompiler
from .codec import from_dict, from_json, to_dict, to_json

__all__ = ["BpmnCompiler", "from_dict", "from_json", "to_dict", "to_json"]
