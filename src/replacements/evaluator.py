from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from src.cluster.config import ClusterConfig
from src.cluster.lookup import PodLookup
from src.cluster.model import ProcessGroupStatus, is_stateful
from src.cluster.podspec import get_process_group_id_from_meta, get_pvc
from src.common.errors import LookupFailed

from .comparators import POD_CHECKS, pvc_mismatch, pvc_owned_by_cluster

logger = logging.getLogger(__name__)


def process_group_needs_removal(
    cluster: ClusterConfig,
    process_group: ProcessGroupStatus,
    pod_lookup: PodLookup,
    pvc_map: Mapping[str, Dict[str, Any]],
) -> bool:
    """Decide whether a process group must be destroyed and recreated.

    Raises ``LookupFailed`` when the Pod could not be fetched and any other
    ``ReplacementError`` when the desired or observed state is unusable; the
    caller treats every error as "undecided".
    """

    if process_group.is_marked_for_removal():
        return False

    pvc = pvc_map.get(process_group.process_group_id)
    pod: Optional[Dict[str, Any]] = None
    pod_error: Optional[LookupFailed] = None
    try:
        pod = pod_lookup.get_pod(cluster, cluster.get_pod_name(process_group))
    except LookupFailed as exc:
        pod_error = exc

    if pvc is not None:
        if process_group_needs_removal_for_pvc(cluster, pvc, process_group) and pod_error is None:
            return True
    elif is_stateful(process_group.process_class):
        logger.debug("Could not find PVC for process group ID %s", process_group.process_group_id)

    if pod_error is not None:
        logger.debug("Could not find Pod for process group ID %s", process_group.process_group_id)
        raise pod_error

    return process_group_needs_removal_for_pod(cluster, pod, process_group)


def process_group_needs_removal_for_pvc(
    cluster: ClusterConfig, pvc: Dict[str, Any], process_group: ProcessGroupStatus
) -> bool:
    pvc_name = (pvc.get("metadata") or {}).get("name")
    if not pvc_owned_by_cluster(cluster, pvc):
        logger.info(
            "Ignoring PVC that is not owned by the cluster namespace=%s cluster=%s pvc=%s processGroupID=%s",
            cluster.namespace,
            cluster.name,
            pvc_name,
            get_process_group_id_from_meta(pvc),
        )
        return False

    desired_pvc = get_pvc(cluster, process_group)
    if desired_pvc is None:
        return False

    reason = pvc_mismatch(desired_pvc, pvc)
    if reason is None:
        return False
    logger.info(
        "Replace process group namespace=%s cluster=%s pvc=%s processGroupID=%s reason=%s",
        cluster.namespace,
        cluster.name,
        pvc_name,
        process_group.process_group_id,
        reason,
    )
    return True


def process_group_needs_removal_for_pod(
    cluster: ClusterConfig, pod: Optional[Dict[str, Any]], process_group: Optional[ProcessGroupStatus]
) -> bool:
    if pod is None or process_group is None:
        return False
    if process_group.is_marked_for_removal():
        return False

    for check in POD_CHECKS:
        reason = check(cluster, pod, process_group)
        if reason is not None:
            logger.info(
                "Replace process group namespace=%s cluster=%s processGroupID=%s reason=%s",
                cluster.namespace,
                cluster.name,
                process_group.process_group_id,
                reason,
            )
            return True
    return False


__all__ = [
    "process_group_needs_removal",
    "process_group_needs_removal_for_pod",
    "process_group_needs_removal_for_pvc",
]
