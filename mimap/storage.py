"""Graph sinks receiving the discovered instances and federation edges."""

import os

from abc import abstractmethod
from csv import DictWriter
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import mimap

from .classifiers import is_vanilla_version, server_scale
from .models import FederationEdge, Instance


class GraphSink:
    """Upsert-only storage: instances are keyed by host, edges by (source, target)."""

    @abstractmethod
    def upsert_instance(self, instance: Instance):
        raise NotImplementedError

    @abstractmethod
    def upsert_federation(self, edge: FederationEdge):
        raise NotImplementedError


class MemoryGraphSink(GraphSink):
    def __init__(self):
        self.instances: Dict[str, Instance] = {}
        self.federations: Dict[Tuple[str, str], FederationEdge] = {}

    def upsert_instance(self, instance: Instance):
        self.instances[instance.host] = instance

    def upsert_federation(self, edge: FederationEdge):
        # Last write wins
        self.federations[edge.key] = edge


class CsvGraphSink(MemoryGraphSink):
    """Writes the graph as CSV files in a timestamped result directory.

    The interaction file follows the Gephi edge format (Source, Target,
    Weight), blocked and suspended relationships having a negative weight.
    """

    INSTANCES_CSV = "instances.csv"
    INSTANCES_CSV_FIELDS: List[str] = [
        "host",
        "name",
        "users_count",
        "notes_count",
        "software_name",
        "software_version",
        "vanilla",
        "repository_url",
        "registration_open",
        "email_required",
        "approval_required",
        "invite_only",
        "age_restriction",
        "description_language",
        "scale",
        "Id",
        "Label",
    ]

    INTERACTIONS_CSV = "interactions.csv"
    INTERACTIONS_CSV_FIELDS = [
        "Source",
        "Target",
        "Weight",
        "users_count",
        "notes_count",
        "is_blocked",
        "is_suspended",
    ]

    def __init__(self, result_dir: Optional[str] = None):
        super().__init__()
        if result_dir is None:
            result_dir = "misskey_discovery_" + datetime.now().strftime("%Y%m%d-%H%M%S")
        self.result_dir = result_dir
        os.makedirs(self.result_dir, exist_ok=True)

        # Version file
        with open(
            os.path.join(self.result_dir, "version.txt"), "w", encoding="utf-8"
        ) as version_file:
            version_file.write(mimap.__version__)

    def _instance_row(self, instance: Instance):
        return {
            "host": instance.host,
            "name": instance.name,
            "users_count": instance.users_count,
            "notes_count": instance.notes_count,
            "software_name": instance.software_name,
            "software_version": instance.software_version,
            "vanilla": is_vanilla_version(instance.software_version),
            "repository_url": instance.repository_url,
            "registration_open": instance.registration_open,
            "email_required": instance.email_required,
            "approval_required": instance.approval_required,
            "invite_only": instance.invite_only,
            "age_restriction": instance.age_restriction.value,
            "description_language": instance.description_language,
            "scale": server_scale(instance.users_count),
            "Id": instance.host,
            "Label": instance.name or instance.host,
        }

    def _interaction_row(self, edge: FederationEdge):
        return {
            "Source": edge.source_host,
            "Target": edge.target_host,
            "Weight": edge.weight,
            "users_count": edge.users_count,
            "notes_count": edge.notes_count,
            "is_blocked": edge.is_blocked,
            "is_suspended": edge.is_suspended,
        }

    def flush(self):
        with open(
            os.path.join(self.result_dir, self.INSTANCES_CSV),
            "w",
            encoding="utf-8",
            newline="",
        ) as csv_file:
            writer = DictWriter(csv_file, fieldnames=self.INSTANCES_CSV_FIELDS)
            writer.writeheader()
            for instance in self.instances.values():
                writer.writerow(self._instance_row(instance))

        with open(
            os.path.join(self.result_dir, self.INTERACTIONS_CSV),
            "w",
            encoding="utf-8",
            newline="",
        ) as csv_file:
            writer = DictWriter(csv_file, fieldnames=self.INTERACTIONS_CSV_FIELDS)
            writer.writeheader()
            for edge in self.federations.values():
                writer.writerow(self._interaction_row(edge))
