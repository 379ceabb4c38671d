"""Sources of observed Pods and PVCs: manifest files, an in-memory map, or kubectl."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml

from src.common.errors import LookupFailed

from .config import ClusterConfig
from .podspec import CLUSTER_LABEL, get_process_group_id_from_meta

logger = logging.getLogger(__name__)


class PodLookup:
    """Resolve a Pod by name. ``None`` means not found; ``LookupFailed`` means unknown."""

    def get_pod(self, cluster: ClusterConfig, pod_name: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


def build_pvc_map(pvcs: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Index claims by the process group ID label; unlabelled claims are dropped."""

    mapping: Dict[str, Dict[str, Any]] = {}
    for pvc in pvcs:
        process_group_id = get_process_group_id_from_meta(pvc)
        if not process_group_id:
            continue
        mapping[process_group_id] = pvc
    return mapping


def _object_name(obj: Dict[str, Any]) -> Optional[str]:
    metadata = obj.get("metadata")
    name = metadata.get("name") if isinstance(metadata, dict) else None
    return name if isinstance(name, str) and name else None


class InMemoryPodLookup(PodLookup):
    def __init__(self, pods: Iterable[Dict[str, Any]] = (), failing: Iterable[str] = ()) -> None:
        self.pods: Dict[str, Dict[str, Any]] = {}
        for pod in pods:
            name = _object_name(pod)
            if name:
                self.pods[name] = pod
        self.failing = set(failing)

    def get_pod(self, cluster: ClusterConfig, pod_name: str) -> Optional[Dict[str, Any]]:
        if pod_name in self.failing:
            raise LookupFailed(f"lookup of pod {pod_name} failed")
        return self.pods.get(pod_name)


class ManifestStore(InMemoryPodLookup):
    """Pods and PVCs read from YAML/JSON manifest files or directories."""

    def __init__(self, pods: Iterable[Dict[str, Any]] = (), pvcs: Iterable[Dict[str, Any]] = ()) -> None:
        super().__init__(pods)
        self.pvcs: List[Dict[str, Any]] = list(pvcs)

    @classmethod
    def from_paths(cls, paths: Sequence[Path]) -> "ManifestStore":
        pods: List[Dict[str, Any]] = []
        pvcs: List[Dict[str, Any]] = []
        for document in _load_documents(_collect_files(paths)):
            kind = document.get("kind")
            if kind == "Pod":
                pods.append(document)
            elif kind == "PersistentVolumeClaim":
                pvcs.append(document)
        logger.debug("Loaded %d pod(s) and %d pvc(s) from manifests", len(pods), len(pvcs))
        return cls(pods, pvcs)

    def pvc_map(self, cluster: ClusterConfig) -> Dict[str, Dict[str, Any]]:
        return build_pvc_map(pvc for pvc in self.pvcs if _belongs_to(cluster, pvc))


def _belongs_to(cluster: ClusterConfig, obj: Dict[str, Any]) -> bool:
    metadata = obj.get("metadata") if isinstance(obj.get("metadata"), dict) else {}
    namespace = metadata.get("namespace")
    if namespace and namespace != cluster.namespace:
        return False
    labels = metadata.get("labels") if isinstance(metadata.get("labels"), dict) else {}
    cluster_name = labels.get(CLUSTER_LABEL)
    return cluster_name in (None, cluster.name)


def _collect_files(paths: Sequence[Path]) -> List[Path]:
    files: List[Path] = []
    for path in paths:
        resolved = Path(path).expanduser().resolve()
        if resolved.is_dir():
            for pattern in ("*.yaml", "*.yml", "*.json"):
                files.extend(sorted(resolved.glob(pattern)))
        elif resolved.exists():
            files.append(resolved)
        else:
            raise FileNotFoundError(f"Manifest not found: {resolved}")
    return files


def _load_documents(files: Iterable[Path]) -> Iterable[Dict[str, Any]]:
    for path in files:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            documents: List[Any] = [json.loads(text)]
        else:
            documents = list(yaml.safe_load_all(text))
        for document in documents:
            yield from _flatten(document)


def _flatten(document: Any) -> Iterable[Dict[str, Any]]:
    if not isinstance(document, dict):
        return
    if document.get("kind") == "List" or (
        isinstance(document.get("items"), list) and str(document.get("kind", "")).endswith("List")
    ):
        for item in document.get("items") or []:
            yield from _flatten(item)
        return
    yield document


class KubectlClient(PodLookup):
    """Observed state read through ``kubectl get ... -o json``."""

    def __init__(self, kubectl_cmd: str = "kubectl", *, context: Optional[str] = None, timeout: float = 30.0) -> None:
        self.kubectl_cmd = kubectl_cmd
        self.context = context
        self.timeout = timeout

    def get_pod(self, cluster: ClusterConfig, pod_name: str) -> Optional[Dict[str, Any]]:
        return self._get(["pod", pod_name, "-n", cluster.namespace])

    def pvc_map(self, cluster: ClusterConfig) -> Dict[str, Dict[str, Any]]:
        data = self._get(["pvc", "-n", cluster.namespace, "-l", f"{CLUSTER_LABEL}={cluster.name}"])
        items = data.get("items") if isinstance(data, dict) else None
        return build_pvc_map(item for item in items or [] if isinstance(item, dict))

    def _get(self, args: Sequence[str]) -> Optional[Dict[str, Any]]:
        command = [self.kubectl_cmd]
        if self.context:
            command.extend(["--context", self.context])
        command.extend(["get", *args, "-o", "json"])
        stdout = self._run_command(command)
        if stdout is None:
            return None
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise LookupFailed(f"unparsable kubectl output for {' '.join(args)}: {exc}") from exc
        if not isinstance(data, dict):
            raise LookupFailed(f"unexpected kubectl output for {' '.join(args)}")
        return data

    def _run_command(self, command: Sequence[str]) -> Optional[str]:
        try:
            completed = subprocess.run(
                command,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise LookupFailed(f"Required binary not found: {command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise LookupFailed(f"Command timed out ({' '.join(command)})") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            if "NotFound" in stderr or "not found" in stderr:
                return None
            raise LookupFailed(f"Command failed ({' '.join(command)}): {stderr or exc}") from exc
        return completed.stdout


__all__ = [
    "InMemoryPodLookup",
    "KubectlClient",
    "ManifestStore",
    "PodLookup",
    "build_pvc_map",
]
