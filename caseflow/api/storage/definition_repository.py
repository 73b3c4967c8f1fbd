# Definition Repository for caseflow
# Versioned storage of deployed process definitions

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from rdflib import Graph, Literal, RDF, URIRef

from caseflow.conversion import BpmnCompiler, codec
from caseflow.core.model import CompiledProcess
from caseflow.errors import CompiledProcessDecodeError, DefinitionNotFound

from .base import BaseStorageService, META, PROC

logger = logging.getLogger(__name__)


@dataclass
class DefinitionRecord:
    """Metadata of one deployed definition version."""

    process_key: str
    version: int
    active: bool
    deployed_at: str
    compiled_process_key: str


@dataclass
class DeploymentResult:
    record: DefinitionRecord
    compiled: CompiledProcess
    warnings: List[str] = field(default_factory=list)


class DefinitionRepository:
    """
    Repository for process definitions.

    Every deployment of a process key creates the next version and
    deactivates the previous one. Each version keeps its BPMN source and its
    compiled artifact as JSON in the definitions graph:

        proc:<key>/<version> a proc:ProcessDefinition ;
            meta:processKey "..." ;
            meta:version 3 ;
            meta:active true ;
            meta:deployedAt "..." ;
            meta:compiledProcessKey "..." ;
            meta:bpmnXml "..." ;
            meta:compiledJson "..." .

    The compiled JSON is a cache: when it fails to decode, the definition is
    recompiled from the stored XML and the cache rewritten.
    """

    def __init__(self, base_storage: BaseStorageService, compiler: Optional[BpmnCompiler] = None):
        """
        Initialize the definition repository.

        Args:
            base_storage: The base storage service providing graph access
            compiler: BPMN compiler (a new one by default)
        """
        self._storage = base_storage
        self._compiler = compiler or BpmnCompiler()
        self._lock = threading.RLock()
        self._cache: Dict[Tuple[str, int], CompiledProcess] = {}

    @property
    def _graph(self) -> Graph:
        return self._storage.definitions_graph

    @staticmethod
    def _uri(process_key: str, version: int) -> URIRef:
        return PROC[f"{quote(process_key, safe='')}/{version}"]

    # ==================== Compilation & Deployment ====================

    def compile(self, process_key: str, xml: str, version: int) -> CompiledProcess:
        """Compile without storing. Raises CompilationError."""
        with self._lock:
            return self._compiler.compile(process_key, xml, version)

    def deploy(self, process_key: str, xml: str) -> DeploymentResult:
        """
        Deploy BPMN XML as the next version of a process key.

        Args:
            process_key: Key the definition is deployed under
            xml: BPMN 2.0 XML

        Returns:
            The stored record, the compiled process and deployment warnings

        Raises:
            CompilationError: If the BPMN cannot be compiled
        """
        with self._lock:
            version = self._latest_version(process_key) + 1
            compiled = self._compiler.compile(process_key, xml, version)

            warnings = []
            if compiled.process_key != process_key:
                warnings.append(
                    f"Requested processKey '{process_key}' but the BPMN process id "
                    f"is '{compiled.process_key}'"
                )

            for subject in self._subjects(process_key):
                self._graph.set((subject, META.active, Literal(False)))

            deployed_at = datetime.now().isoformat()
            uri = self._uri(process_key, version)
            self._graph.add((uri, RDF.type, PROC.ProcessDefinition))
            self._graph.add((uri, META.processKey, Literal(process_key)))
            self._graph.add((uri, META.version, Literal(version)))
            self._graph.add((uri, META.active, Literal(True)))
            self._graph.add((uri, META.deployedAt, Literal(deployed_at)))
            self._graph.add((uri, META.compiledProcessKey, Literal(compiled.process_key)))
            self._graph.add((uri, META.bpmnXml, Literal(xml)))
            self._graph.add((uri, META.compiledJson, Literal(codec.to_json(compiled))))
            self._storage.save_definitions()

            self._cache[(process_key, version)] = compiled
            logger.info(f"Deployed process {process_key} v{version}")

            record = DefinitionRecord(
                process_key=process_key,
                version=version,
                active=True,
                deployed_at=deployed_at,
                compiled_process_key=compiled.process_key,
            )
            return DeploymentResult(record=record, compiled=compiled, warnings=warnings)

    # ==================== Lookup ====================

    def latest(self, process_key: str) -> CompiledProcess:
        """
        Latest active version of a process key.

        Raises:
            DefinitionNotFound: If the key has no active version
        """
        with self._lock:
            active = [
                self._value_int(s, META.version)
                for s in self._subjects(process_key)
                if bool(self._graph.value(s, META.active).toPython())
            ]
            if not active:
                raise DefinitionNotFound(f"No active definition for process '{process_key}'")
            return self._load(process_key, max(active))

    def by_version(self, process_key: str, version: int) -> CompiledProcess:
        """
        A specific version of a process key.

        Raises:
            DefinitionNotFound: If the version does not exist
        """
        with self._lock:
            uri = self._uri(process_key, version)
            if (uri, RDF.type, PROC.ProcessDefinition) not in self._graph:
                raise DefinitionNotFound(f"No definition for process '{process_key}' v{version}")
            return self._load(process_key, version)

    def get_xml(self, process_key: str, version: int) -> str:
        with self._lock:
            xml = self._graph.value(self._uri(process_key, version), META.bpmnXml)
            if xml is None:
                raise DefinitionNotFound(f"No definition for process '{process_key}' v{version}")
            return str(xml)

    def list_definitions(self, process_key: Optional[str] = None) -> List[DefinitionRecord]:
        """All deployed versions, ordered by key then version."""
        with self._lock:
            records = []
            for subject in self._graph.subjects(RDF.type, PROC.ProcessDefinition):
                key = str(self._graph.value(subject, META.processKey))
                if process_key is not None and key != process_key:
                    continue
                records.append(
                    DefinitionRecord(
                        process_key=key,
                        version=self._value_int(subject, META.version),
                        active=bool(self._graph.value(subject, META.active).toPython()),
                        deployed_at=str(self._graph.value(subject, META.deployedAt)),
                        compiled_process_key=str(
                            self._graph.value(subject, META.compiledProcessKey)
                        ),
                    )
                )
            return sorted(records, key=lambda r: (r.process_key, r.version))

    # ==================== Helpers ====================

    def _subjects(self, process_key: str) -> List[URIRef]:
        return list(self._graph.subjects(META.processKey, Literal(process_key)))

    def _value_int(self, subject: URIRef, predicate: URIRef) -> int:
        return int(self._graph.value(subject, predicate).toPython())

    def _latest_version(self, process_key: str) -> int:
        versions = [self._value_int(s, META.version) for s in self._subjects(process_key)]
        return max(versions, default=0)

    def _load(self, process_key: str, version: int) -> CompiledProcess:
        cached = self._cache.get((process_key, version))
        if cached is not None:
            return cached

        uri = self._uri(process_key, version)
        try:
            compiled = codec.from_json(str(self._graph.value(uri, META.compiledJson)))
        except CompiledProcessDecodeError as e:
            logger.warning(f"Recompiling {process_key} v{version} from stored XML: {e}")
            compiled = self._compiler.compile(
                process_key, str(self._graph.value(uri, META.bpmnXml)), version
            )
            self._graph.set((uri, META.compiledJson, Literal(codec.to_json(compiled))))
            self._storage.save_definitions()

        self._cache[(process_key, version)] = compiled
        return compiled
