"""Independent checks comparing one dimension of desired and observed state.

Each pod check takes the cluster configuration, the observed Pod and the
process group status and returns a human readable reason when the process
group has to be replaced, ``None`` otherwise.
"""

from __future__ import annotations

import base64
import json
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.cluster.config import ClusterConfig
from src.cluster.model import ProcessGroupStatus
from src.cluster.podspec import (
    LAST_SPEC_KEY,
    get_annotation,
    get_json_hash,
    get_pod,
    get_pod_spec,
    get_pod_spec_hash,
    get_public_ip_source,
    get_servers_per_pod,
)
from src.common.errors import FingerprintComputationFailed, InvalidObservedState
from src.common.quantity import QuantityParseError, sum_requests

from .security_context import file_security_context_changed

logger = logging.getLogger(__name__)

PodCheck = Callable[[ClusterConfig, Dict[str, Any], ProcessGroupStatus], Optional[str]]


def _spec(obj: Dict[str, Any]) -> Dict[str, Any]:
    spec = obj.get("spec")
    return spec if isinstance(spec, dict) else {}


def process_group_id_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    id_number = process_group.get_id_number()
    _, desired_id = cluster.get_process_group_id(process_group.process_class, id_number)
    if process_group.process_group_id != desired_id:
        return f"expect process group ID: {desired_id}"
    return None


def public_ip_source_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    current = get_public_ip_source(pod)
    desired = cluster.get_public_ip_source()
    if current != desired:
        return f"publicIP source has changed from {current} to {desired}"
    return None


def servers_per_pod_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    current = get_servers_per_pod(pod, process_group.process_class)
    desired = cluster.get_desired_servers_per_pod(process_group.process_class)
    if current != desired:
        return f"serversPerPod have changes from current: {current} to desired: {desired}"
    return None


def node_selector_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    """Selector drift counts only when the stored spec hash is stale as well."""

    template = cluster.get_process_settings(process_group.process_class).pod_template or {}
    desired_selector = _spec(template).get("nodeSelector") or {}
    current_selector = _spec(pod).get("nodeSelector") or {}
    if current_selector == desired_selector:
        return None

    spec_hash = get_pod_spec_hash(cluster, process_group)
    if get_annotation(pod, LAST_SPEC_KEY) != spec_hash:
        return f"nodeSelector has changed from {current_selector} to {desired_selector}"
    return None


def spec_hash_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    """Stale spec hash, acted on only when the update strategy replaces this class."""

    if not cluster.needs_replacement(process_group):
        return None

    spec = get_pod_spec(cluster, process_group)
    spec_hash = get_pod_spec_hash(cluster, process_group, spec)
    current_hash = get_annotation(pod, LAST_SPEC_KEY)
    if current_hash == spec_hash:
        return None

    encoded = base64.b64encode(json.dumps(spec, sort_keys=True).encode("utf-8")).decode("ascii")
    logger.debug(
        "Desired spec for process group %s: %s", process_group.process_group_id, encoded
    )
    return f"specHash has changed from {current_hash} to {spec_hash}"


def _requests(containers: Any, side: str) -> Tuple[Decimal, Decimal]:
    try:
        return sum_requests(containers if isinstance(containers, list) else [])
    except QuantityParseError as exc:
        if side == "desired":
            raise FingerprintComputationFailed(f"desired resource requests are invalid: {exc}") from exc
        raise InvalidObservedState(f"observed resource requests are invalid: {exc}") from exc


def resources_need_replacement(desired: List[Dict[str, Any]], current: List[Dict[str, Any]]) -> bool:
    """True when the summed CPU or memory requests strictly increase.

    Only requests are compared, limits play no part in scheduling.
    """

    desired_cpu, desired_memory = _requests(desired, "desired")
    current_cpu, current_memory = _requests(current, "current")
    return desired_cpu > current_cpu or desired_memory > current_memory


def resources_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    if not cluster.should_replace_on_resource_change():
        return None

    desired_spec = get_pod_spec(cluster, process_group)
    current_spec = _spec(pod)
    if resources_need_replacement(desired_spec.get("containers") or [], current_spec.get("containers") or []):
        return "Resource requests have changed"
    if resources_need_replacement(
        desired_spec.get("initContainers") or [], current_spec.get("initContainers") or []
    ):
        return "Resource requests have changed"
    return None


def file_security_context_mismatch(
    cluster: ClusterConfig, pod: Dict[str, Any], process_group: ProcessGroupStatus
) -> Optional[str]:
    if not cluster.replace_on_security_context_change:
        return None

    desired_pod = get_pod(cluster, process_group)
    if file_security_context_changed(desired_pod, pod):
        return "file security context has changed"
    return None


# Evaluated in order; the first reason found wins.
POD_CHECKS: Tuple[PodCheck, ...] = (
    process_group_id_mismatch,
    public_ip_source_mismatch,
    servers_per_pod_mismatch,
    node_selector_mismatch,
    spec_hash_mismatch,
    resources_mismatch,
    file_security_context_mismatch,
)


def pvc_owned_by_cluster(cluster: ClusterConfig, pvc: Dict[str, Any]) -> bool:
    if not cluster.should_filter_on_owner_references():
        return True
    metadata = pvc.get("metadata") if isinstance(pvc.get("metadata"), dict) else {}
    for owner_reference in metadata.get("ownerReferences") or []:
        if isinstance(owner_reference, dict) and owner_reference.get("uid") == cluster.uid:
            return True
    return False


def pvc_mismatch(
    desired_pvc: Dict[str, Any], pvc: Dict[str, Any]
) -> Optional[str]:
    """Compare a claim against the desired one by spec hash and by name."""

    desired_hash = get_json_hash(_spec(desired_pvc))
    current_hash = get_annotation(pvc, LAST_SPEC_KEY)
    if current_hash != desired_hash:
        return f"PVC spec has changed from {current_hash} to {desired_hash}"

    desired_name = (desired_pvc.get("metadata") or {}).get("name")
    current_name = (pvc.get("metadata") or {}).get("name")
    if current_name != desired_name:
        return f"PVC name has changed from {current_name} to {desired_name}"
    return None


__all__ = [
    "POD_CHECKS",
    "PodCheck",
    "file_security_context_mismatch",
    "node_selector_mismatch",
    "process_group_id_mismatch",
    "public_ip_source_mismatch",
    "pvc_mismatch",
    "pvc_owned_by_cluster",
    "resources_mismatch",
    "resources_need_replacement",
    "servers_per_pod_mismatch",
    "spec_hash_mismatch",
]
