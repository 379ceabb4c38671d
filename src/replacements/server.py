from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from src.cluster.config import ClusterConfig, parse_cluster_config
from src.cluster.lookup import InMemoryPodLookup, PodLookup, build_pvc_map
from src.cluster.model import ProcessGroupStatus
from src.common.errors import ClusterConfigError, LookupFailed, ReplacementError

from .engine import marked_process_group_ids, replace_misconfigured_process_groups
from .evaluator import process_group_needs_removal


class ScanPayload(BaseModel):
    cluster: Dict[str, Any] = Field(..., description="Cluster configuration document")
    process_groups: List[Dict[str, Any]] = Field(
        default_factory=list, alias="processGroups", description="Process group status entries"
    )
    pods: List[Dict[str, Any]] = Field(default_factory=list, description="Observed Pod manifests")
    pvcs: List[Dict[str, Any]] = Field(default_factory=list, description="Observed PVC manifests")


class ScanResponse(BaseModel):
    has_replacements: bool = Field(..., alias="hasReplacements")
    marked: List[str] = Field(..., description="Process groups newly marked for removal")
    process_groups: List[Dict[str, Any]] = Field(..., alias="processGroups")


class EvaluatePayload(BaseModel):
    cluster: Dict[str, Any] = Field(..., description="Cluster configuration document")
    process_group: Dict[str, Any] = Field(..., alias="processGroup")
    pod: Optional[Dict[str, Any]] = Field(default=None, description="Observed Pod, omitted when absent")
    pvc: Optional[Dict[str, Any]] = Field(default=None, description="Observed PVC, omitted when absent")


class EvaluateResponse(BaseModel):
    needs_removal: bool = Field(..., alias="needsRemoval")


def _cluster(data: Dict[str, Any]) -> ClusterConfig:
    try:
        return parse_cluster_config(data)
    except ClusterConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _process_groups(entries: List[Dict[str, Any]]) -> List[ProcessGroupStatus]:
    try:
        return [ProcessGroupStatus.from_dict(entry) for entry in entries]
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


PodLookupFactory = Callable[[Iterable[Dict[str, Any]]], PodLookup]


def get_pod_lookup_factory() -> PodLookupFactory:
    """Builds the lookup that serves the Pods posted with a scan."""

    return InMemoryPodLookup


def create_app() -> FastAPI:
    app = FastAPI(
        title="Process Group Replacements",
        description="Decides which process groups must be replaced instead of updated in place.",
        version="0.1.0",
    )

    @app.post("/scan", response_model=ScanResponse, response_model_by_alias=True)
    def scan(
        payload: ScanPayload,
        lookup_factory: PodLookupFactory = Depends(get_pod_lookup_factory),
    ) -> ScanResponse:
        cluster = _cluster(payload.cluster)
        process_groups = _process_groups(payload.process_groups)
        already_marked = set(marked_process_group_ids(process_groups))
        lookup = lookup_factory(payload.pods)
        try:
            has_replacements = replace_misconfigured_process_groups(
                cluster, process_groups, lookup, build_pvc_map(payload.pvcs)
            )
        except ClusterConfigError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        marked = [
            group_id for group_id in marked_process_group_ids(process_groups) if group_id not in already_marked
        ]
        return ScanResponse(
            hasReplacements=has_replacements,
            marked=marked,
            processGroups=[group.to_dict() for group in process_groups],
        )

    @app.post("/evaluate", response_model=EvaluateResponse, response_model_by_alias=True)
    def evaluate(payload: EvaluatePayload) -> EvaluateResponse:
        cluster = _cluster(payload.cluster)
        process_group = _process_groups([payload.process_group])[0]
        pvc_map = {process_group.process_group_id: payload.pvc} if payload.pvc else {}
        try:
            lookup = InMemoryPodLookup()
            if payload.pod:
                # The pod is matched to the process group regardless of its recorded name.
                lookup.pods[cluster.get_pod_name(process_group)] = payload.pod
            needs_removal = process_group_needs_removal(cluster, process_group, lookup, pvc_map)
        except LookupFailed as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        except ReplacementError as exc:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
        return EvaluateResponse(needsRemoval=needs_removal)

    return app


app = create_app()


__all__ = [
    "EvaluatePayload",
    "EvaluateResponse",
    "ScanPayload",
    "ScanResponse",
    "app",
    "create_app",
    "get_pod_lookup_factory",
]
