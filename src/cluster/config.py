"""Cluster configuration models and the accessors the replacement engine consults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.common.errors import ClusterConfigError

from .model import (
    PROCESS_CLASS_GENERAL,
    PROCESS_CLASS_STORAGE,
    ProcessGroupStatus,
    is_log_process,
)

PUBLIC_IP_SOURCE_POD = "pod"
PUBLIC_IP_SOURCE_SERVICE = "service"

POD_UPDATE_STRATEGY_REPLACEMENT = "Replacement"
POD_UPDATE_STRATEGY_TRANSACTION_REPLACEMENT = "TransactionReplacement"
POD_UPDATE_STRATEGY_DELETE = "Delete"

PublicIPSource = Literal["pod", "service"]
PodUpdateStrategy = Literal["Replacement", "TransactionReplacement", "Delete"]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ClusterMetadata(_Model):
    name: str
    namespace: str = "default"
    uid: str = ""


class RoutingConfig(_Model):
    public_ip_source: Optional[PublicIPSource] = Field(default=None, alias="publicIPSource")


class LabelConfig(_Model):
    filter_on_owner_references: Optional[bool] = Field(default=None, alias="filterOnOwnerReferences")


class AutomationOptions(_Model):
    pod_update_strategy: Optional[PodUpdateStrategy] = Field(default=None, alias="podUpdateStrategy")
    max_concurrent_replacements: Optional[int] = Field(default=None, alias="maxConcurrentReplacements")


class ProcessSettings(_Model):
    pod_template: Optional[Dict[str, Any]] = Field(default=None, alias="podTemplate")
    volume_claim_template: Optional[Dict[str, Any]] = Field(default=None, alias="volumeClaimTemplate")


class ClusterConfig(_Model):
    metadata: ClusterMetadata
    process_group_id_prefix: Optional[str] = Field(default=None, alias="processGroupIDPrefix")
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    storage_servers_per_pod: int = Field(default=1, alias="storageServersPerPod", ge=1)
    log_servers_per_pod: int = Field(default=1, alias="logServersPerPod", ge=1)
    processes: Dict[str, ProcessSettings] = Field(default_factory=dict)
    automation_options: AutomationOptions = Field(default_factory=AutomationOptions, alias="automationOptions")
    replace_instances_when_resources_change: Optional[bool] = Field(
        default=None, alias="replaceInstancesWhenResourcesChange"
    )
    replace_on_security_context_change: bool = Field(default=False, alias="replaceOnSecurityContextChange")
    label_config: LabelConfig = Field(default_factory=LabelConfig, alias="labelConfig")

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def uid(self) -> str:
        return self.metadata.uid

    def get_public_ip_source(self) -> str:
        return self.routing.public_ip_source or PUBLIC_IP_SOURCE_POD

    def get_desired_servers_per_pod(self, process_class: str) -> int:
        if process_class == PROCESS_CLASS_STORAGE:
            return self.storage_servers_per_pod
        if is_log_process(process_class):
            return self.log_servers_per_pod
        return 1

    def get_process_settings(self, process_class: str) -> ProcessSettings:
        """Class specific settings, falling back to the general settings field by field."""

        general = self.processes.get(PROCESS_CLASS_GENERAL) or ProcessSettings()
        specific = self.processes.get(process_class) or ProcessSettings()
        return ProcessSettings(
            pod_template=specific.pod_template if specific.pod_template is not None else general.pod_template,
            volume_claim_template=(
                specific.volume_claim_template
                if specific.volume_claim_template is not None
                else general.volume_claim_template
            ),
        )

    def needs_replacement(self, process_group: ProcessGroupStatus) -> bool:
        """Whether the update strategy replaces instead of updating in place for this group."""

        strategy = self.automation_options.pod_update_strategy
        if strategy == POD_UPDATE_STRATEGY_REPLACEMENT:
            return True
        if strategy == POD_UPDATE_STRATEGY_TRANSACTION_REPLACEMENT:
            return is_log_process(process_group.process_class)
        return False

    def should_filter_on_owner_references(self) -> bool:
        return bool(self.label_config.filter_on_owner_references)

    def should_replace_on_resource_change(self) -> bool:
        return bool(self.replace_instances_when_resources_change)

    def get_max_concurrent_replacements(self) -> Optional[int]:
        return self.automation_options.max_concurrent_replacements

    def get_process_group_id(self, process_class: str, id_number: int) -> Tuple[str, str]:
        """Return ``(pod_name, process_group_id)`` for a class and number."""

        pod_name = f"{self.name}-{process_class.replace('_', '-')}-{id_number}"
        process_group_id = f"{process_class}-{id_number}"
        if self.process_group_id_prefix:
            process_group_id = f"{self.process_group_id_prefix}-{process_group_id}"
        return pod_name, process_group_id

    def get_pod_name(self, process_group: ProcessGroupStatus) -> str:
        pod_name, _ = self.get_process_group_id(process_group.process_class, process_group.get_id_number())
        return pod_name


def parse_cluster_config(data: Mapping[str, Any]) -> ClusterConfig:
    """Validate a configuration mapping.

    Accepts either the flat configuration or a cluster resource with the
    settings nested below ``spec``.
    """

    if not isinstance(data, Mapping):
        raise ClusterConfigError("cluster configuration must be a mapping")
    payload = dict(data)
    spec = payload.get("spec")
    if isinstance(spec, dict) and "kind" in payload:
        payload = {"metadata": payload.get("metadata") or {}, **spec}
    try:
        return ClusterConfig.model_validate(payload)
    except ValidationError as exc:
        raise ClusterConfigError(f"invalid cluster configuration: {exc}") from exc


def load_cluster_config(path: Path) -> ClusterConfig:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ClusterConfigError(f"failed to read cluster configuration {path}: {exc}") from exc
    try:
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ClusterConfigError(f"failed to parse cluster configuration {path}: {exc}") from exc
    return parse_cluster_config(data or {})


__all__ = [
    "AutomationOptions",
    "ClusterConfig",
    "ClusterMetadata",
    "LabelConfig",
    "POD_UPDATE_STRATEGY_DELETE",
    "POD_UPDATE_STRATEGY_REPLACEMENT",
    "POD_UPDATE_STRATEGY_TRANSACTION_REPLACEMENT",
    "PUBLIC_IP_SOURCE_POD",
    "PUBLIC_IP_SOURCE_SERVICE",
    "ProcessSettings",
    "RoutingConfig",
    "load_cluster_config",
    "parse_cluster_config",
]
