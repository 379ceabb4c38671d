"""Desired Pod / PVC construction, spec fingerprints and readers for observed Pods."""

from __future__ import annotations

import copy
import hashlib
import json
from typing import Any, Dict, List, Optional

from src.common.errors import FingerprintComputationFailed, InvalidObservedState

from .config import PUBLIC_IP_SOURCE_POD, ClusterConfig
from .model import ProcessGroupStatus, is_stateful

LAST_SPEC_KEY = "foundationdb.org/last-applied-spec"
PUBLIC_IP_SOURCE_ANNOTATION = "foundationdb.org/public-ip-source"
CLUSTER_LABEL = "foundationdb.org/fdb-cluster-name"
PROCESS_CLASS_LABEL = "foundationdb.org/fdb-process-class"
PROCESS_GROUP_ID_LABEL = "foundationdb.org/fdb-process-group-id"

MAIN_CONTAINER_NAME = "foundationdb"
SIDECAR_CONTAINER_NAME = "foundationdb-kubernetes-sidecar"
INIT_CONTAINER_NAME = "foundationdb-kubernetes-init"
SERVERS_PER_POD_ENV = "SERVERS_PER_POD"

_DEFAULT_MAIN_REQUESTS = {"cpu": "1", "memory": "1Gi"}
_DEFAULT_SIDECAR_REQUESTS = {"cpu": "100m", "memory": "128Mi"}
_DEFAULT_STORAGE_REQUEST = "128G"


def get_json_hash(obj: Any) -> str:
    """SHA-256 over the canonical JSON rendering of ``obj``."""

    try:
        encoded = json.dumps(obj, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise FingerprintComputationFailed(f"failed to serialise spec for hashing: {exc}") from exc
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _child_mapping(parent: Dict[str, Any], key: str, where: str) -> Dict[str, Any]:
    """Nested mapping under ``key``, created when missing or null."""

    value = parent.get(key)
    if value is None:
        value = parent[key] = {}
    if not isinstance(value, dict):
        raise FingerprintComputationFailed(f"{where}.{key} must be a mapping, got {type(value).__name__}")
    return value


def _child_list(parent: Dict[str, Any], key: str, where: str) -> List[Any]:
    value = parent.get(key)
    if value is None:
        value = parent[key] = []
    if not isinstance(value, list):
        raise FingerprintComputationFailed(f"{where}.{key} must be a list, got {type(value).__name__}")
    return value


def _ensure_container(containers: List[Dict[str, Any]], name: str, default_requests: Dict[str, str]) -> Dict[str, Any]:
    for container in containers:
        if isinstance(container, dict) and container.get("name") == name:
            break
    else:
        container = {"name": name}
        containers.append(container)
    resources = container.get("resources")
    if not resources:
        container["resources"] = {"requests": dict(default_requests)}
    elif not isinstance(resources, dict):
        raise FingerprintComputationFailed(f"container {name} resources must be a mapping")
    return container


def _set_env(container: Dict[str, Any], name: str, value: str) -> None:
    env = _child_list(container, "env", f"container {container.get('name')}")
    for entry in env:
        if isinstance(entry, dict) and entry.get("name") == name:
            entry["value"] = value
            return
    env.append({"name": name, "value": value})


def _template_map(metadata: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = metadata.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FingerprintComputationFailed(f"template metadata.{key} must be a mapping")
    return dict(value)


def get_pod_spec(cluster: ClusterConfig, process_group: ProcessGroupStatus) -> Dict[str, Any]:
    settings = cluster.get_process_settings(process_group.process_class)
    template = settings.pod_template or {}
    if not isinstance(template, dict):
        raise FingerprintComputationFailed(
            f"pod template for class {process_group.process_class} must be a mapping"
        )
    spec = copy.deepcopy(template.get("spec") or {})
    if not isinstance(spec, dict):
        raise FingerprintComputationFailed(
            f"pod template spec for class {process_group.process_class} must be a mapping"
        )

    where = f"pod template spec for class {process_group.process_class}"
    containers = _child_list(spec, "containers", where)
    init_containers = _child_list(spec, "initContainers", where)

    main = _ensure_container(containers, MAIN_CONTAINER_NAME, _DEFAULT_MAIN_REQUESTS)
    _ensure_container(containers, SIDECAR_CONTAINER_NAME, _DEFAULT_SIDECAR_REQUESTS)
    _ensure_container(init_containers, INIT_CONTAINER_NAME, _DEFAULT_SIDECAR_REQUESTS)

    servers_per_pod = cluster.get_desired_servers_per_pod(process_group.process_class)
    _set_env(main, SERVERS_PER_POD_ENV, str(servers_per_pod))
    return spec


def get_pod_spec_hash(
    cluster: ClusterConfig,
    process_group: ProcessGroupStatus,
    spec: Optional[Dict[str, Any]] = None,
) -> str:
    """Fingerprint of ``spec``; rebuilt from the configuration when not given."""

    if spec is None:
        spec = get_pod_spec(cluster, process_group)
    return get_json_hash(spec)


def get_pod(cluster: ClusterConfig, process_group: ProcessGroupStatus) -> Dict[str, Any]:
    spec = get_pod_spec(cluster, process_group)
    template = cluster.get_process_settings(process_group.process_class).pod_template or {}
    template_meta = template.get("metadata") if isinstance(template.get("metadata"), dict) else {}

    labels = _template_map(template_meta, "labels")
    labels.update(
        {
            CLUSTER_LABEL: cluster.name,
            PROCESS_CLASS_LABEL: process_group.process_class,
            PROCESS_GROUP_ID_LABEL: process_group.process_group_id,
        }
    )
    annotations = _template_map(template_meta, "annotations")
    annotations[LAST_SPEC_KEY] = get_pod_spec_hash(cluster, process_group, spec)
    if cluster.routing.public_ip_source is not None:
        annotations[PUBLIC_IP_SOURCE_ANNOTATION] = cluster.routing.public_ip_source

    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": cluster.get_pod_name(process_group),
            "namespace": cluster.namespace,
            "labels": labels,
            "annotations": annotations,
        },
        "spec": spec,
    }


def get_pvc(cluster: ClusterConfig, process_group: ProcessGroupStatus) -> Optional[Dict[str, Any]]:
    """Desired claim for stateful classes, ``None`` for stateless ones."""

    if not is_stateful(process_group.process_class):
        return None

    template = copy.deepcopy(cluster.get_process_settings(process_group.process_class).volume_claim_template or {})
    if not isinstance(template, dict):
        raise FingerprintComputationFailed("volume claim template must be a mapping")
    where = f"volume claim template for class {process_group.process_class}"
    spec = _child_mapping(template, "spec", where)
    if spec.get("accessModes") is None:
        spec["accessModes"] = ["ReadWriteOnce"]
    resources = _child_mapping(spec, "resources", f"{where}.spec")
    requests = _child_mapping(resources, "requests", f"{where}.spec.resources")
    if requests.get("storage") is None:
        requests["storage"] = _DEFAULT_STORAGE_REQUEST

    template_meta = template.get("metadata") if isinstance(template.get("metadata"), dict) else {}
    annotations = _template_map(template_meta, "annotations")
    annotations[LAST_SPEC_KEY] = get_json_hash(spec)
    labels = _template_map(template_meta, "labels")
    labels.update(
        {
            CLUSTER_LABEL: cluster.name,
            PROCESS_CLASS_LABEL: process_group.process_class,
            PROCESS_GROUP_ID_LABEL: process_group.process_group_id,
        }
    )

    name = template_meta.get("name")
    pod_name = cluster.get_pod_name(process_group)
    pvc_name = f"{pod_name}-{name}" if name else f"{pod_name}-data"

    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": pvc_name,
            "namespace": cluster.namespace,
            "labels": labels,
            "annotations": annotations,
            "ownerReferences": [
                {
                    "apiVersion": "apps.foundationdb.org/v1beta2",
                    "kind": "FoundationDBCluster",
                    "name": cluster.name,
                    "uid": cluster.uid,
                    "controller": True,
                }
            ],
        },
        "spec": spec,
    }


def _metadata(obj: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not isinstance(obj, dict):
        return {}
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def get_annotation(obj: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    annotations = _metadata(obj).get("annotations")
    if not isinstance(annotations, dict):
        return None
    return annotations.get(key)


def get_process_group_id_from_meta(obj: Optional[Dict[str, Any]]) -> Optional[str]:
    labels = _metadata(obj).get("labels")
    if not isinstance(labels, dict):
        return None
    return labels.get(PROCESS_GROUP_ID_LABEL)


def get_public_ip_source(pod: Dict[str, Any]) -> str:
    source = get_annotation(pod, PUBLIC_IP_SOURCE_ANNOTATION)
    if not source:
        return PUBLIC_IP_SOURCE_POD
    return source


def get_servers_per_pod(pod: Dict[str, Any], process_class: str) -> int:
    """Servers packed into the Pod, read from the environment of its containers."""

    spec = pod.get("spec") if isinstance(pod.get("spec"), dict) else {}
    for container in spec.get("containers") or []:
        if not isinstance(container, dict):
            continue
        for entry in container.get("env") or []:
            if not isinstance(entry, dict) or entry.get("name") != SERVERS_PER_POD_ENV:
                continue
            value = entry.get("value")
            try:
                return int(value)
            except (TypeError, ValueError) as exc:
                raise InvalidObservedState(
                    f"{SERVERS_PER_POD_ENV}={value!r} on {process_class} pod is not an integer"
                ) from exc
    return 1


__all__ = [
    "CLUSTER_LABEL",
    "INIT_CONTAINER_NAME",
    "LAST_SPEC_KEY",
    "MAIN_CONTAINER_NAME",
    "PROCESS_CLASS_LABEL",
    "PROCESS_GROUP_ID_LABEL",
    "PUBLIC_IP_SOURCE_ANNOTATION",
    "SERVERS_PER_POD_ENV",
    "SIDECAR_CONTAINER_NAME",
    "get_annotation",
    "get_json_hash",
    "get_pod",
    "get_pod_spec",
    "get_pod_spec_hash",
    "get_process_group_id_from_meta",
    "get_public_ip_source",
    "get_pvc",
    "get_servers_per_pod",
]
