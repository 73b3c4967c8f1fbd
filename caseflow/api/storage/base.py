# Definition Graph Storage for caseflow
# Keeps deployed process definitions in one rdflib graph persisted as Turtle

import os
import logging
from rdflib import Graph, Namespace, RDF

logger = logging.getLogger(__name__)

# Definition subjects and their properties
PROC = Namespace("urn:caseflow:definition:")
META = Namespace("urn:caseflow:meta:")

DEFINITIONS_FILE = "definitions.ttl"


class BaseStorageService:
    """
    Turtle-backed graph of deployed process definitions.

    Every save rewrites the whole file through a temporary sibling, so an
    interrupted write leaves the previous set of deployments readable.
    """

    def __init__(self, storage_path: str = "data/caseflow_rdf"):
        self.storage_path = storage_path
        self.path = os.path.join(storage_path, DEFINITIONS_FILE)
        os.makedirs(storage_path, exist_ok=True)

        self._definitions_graph = self._read()
        logger.info(f"Definition store at {self.path} ({len(self._definitions_graph)} triples)")

    @staticmethod
    def _empty() -> Graph:
        graph = Graph()
        graph.bind("proc", PROC)
        graph.bind("meta", META)
        return graph

    def _read(self) -> Graph:
        graph = self._empty()
        if not os.path.exists(self.path):
            return graph
        try:
            graph.parse(self.path, format="turtle")
        except Exception as e:
            # rdflib raises parser specific errors; start empty rather than refuse to boot
            logger.warning(f"Ignoring unreadable definition store {self.path}: {e}")
            return self._empty()
        return graph

    @property
    def definitions_graph(self) -> Graph:
        return self._definitions_graph

    def save_definitions(self) -> None:
        """Persist the graph."""
        partial = f"{self.path}.partial"
        self._definitions_graph.serialize(partial, format="turtle")
        os.replace(partial, self.path)
        logger.debug(f"Saved {len(self._definitions_graph)} triples to {self.path}")

    def clear_all(self) -> None:
        """Forget every deployment and delete the Turtle file."""
        self._definitions_graph = self._empty()
        if os.path.exists(self.path):
            os.remove(self.path)
        logger.warning(f"Cleared definition store {self.path}")

    def get_stats(self) -> dict:
        definitions = set(self._definitions_graph.subjects(RDF.type, PROC.ProcessDefinition))
        return {
            "definition_count": len(definitions),
            "definitions_triples": len(self._definitions_graph),
            "storage_path": self.storage_path,
        }
