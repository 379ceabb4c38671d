from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import jsonpatch
import typer
import yaml

from src.cluster.config import ClusterConfig, load_cluster_config
from src.cluster.lookup import KubectlClient, ManifestStore, PodLookup
from src.cluster.model import ProcessGroupStatus
from src.common.errors import ClusterConfigError, ReplacementError

from .engine import marked_process_group_ids, replace_misconfigured_process_groups
from .evaluator import process_group_needs_removal

app = typer.Typer(help="Mark misconfigured process groups of a cluster for replacement.")


@app.command()
def scan(
    cluster_path: Path = typer.Option(
        ...,
        "--cluster",
        "-c",
        help="Cluster configuration YAML/JSON file.",
    ),
    status: Path = typer.Option(
        ...,
        "--status",
        "-s",
        help="Process group status file (JSON or YAML list).",
    ),
    manifests: Optional[List[Path]] = typer.Option(
        None,
        "--manifests",
        "-m",
        help="Observed Pod/PVC manifest file(s) or directories.",
    ),
    kubectl: bool = typer.Option(
        False,
        "--kubectl",
        help="Read observed Pods and PVCs from the live cluster with kubectl.",
    ),
    kubectl_cmd: str = typer.Option(
        "kubectl",
        help="Command used to invoke kubectl.",
    ),
    out: Optional[Path] = typer.Option(
        None,
        "--out",
        "-o",
        help="Where to write the updated process group status (defaults to stdout).",
    ),
    patch_out: Optional[Path] = typer.Option(
        None,
        "--patch-out",
        help="Optional path to write the RFC 6902 patch between old and new status.",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    _configure_logging(log_level)
    cluster = _load_cluster(cluster_path)
    process_groups = _load_status(status)
    pod_lookup, pvc_map = _observed_state(cluster, manifests, kubectl, kubectl_cmd)

    before = [group.to_dict() for group in process_groups]
    try:
        has_replacements = replace_misconfigured_process_groups(cluster, process_groups, pod_lookup, pvc_map)
    except ClusterConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    after = [group.to_dict() for group in process_groups]

    rendered = json.dumps(after, indent=2)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(rendered, encoding="utf-8")
    else:
        typer.echo(rendered)

    if patch_out is not None:
        patch = jsonpatch.make_patch(before, after)
        patch_out.parent.mkdir(parents=True, exist_ok=True)
        patch_out.write_text(json.dumps(patch.patch, indent=2), encoding="utf-8")

    previously_marked = {entry["processGroupID"] for entry in before if "removalTimestamp" in entry}
    newly_marked = [
        group_id for group_id in marked_process_group_ids(process_groups) if group_id not in previously_marked
    ]
    if has_replacements:
        typer.echo(f"Marked {len(newly_marked)} process group(s) for removal: {', '.join(newly_marked)}", err=True)
    else:
        typer.echo("No process groups need replacement", err=True)


@app.command()
def evaluate(
    cluster_path: Path = typer.Option(..., "--cluster", "-c", help="Cluster configuration YAML/JSON file."),
    status: Path = typer.Option(..., "--status", "-s", help="Process group status file."),
    process_group_id: str = typer.Option(..., "--process-group", "-p", help="Process group ID to evaluate."),
    manifests: Optional[List[Path]] = typer.Option(
        None, "--manifests", "-m", help="Observed Pod/PVC manifest file(s) or directories."
    ),
    kubectl: bool = typer.Option(False, "--kubectl", help="Read observed state with kubectl."),
    kubectl_cmd: str = typer.Option("kubectl", help="Command used to invoke kubectl."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    _configure_logging(log_level)
    cluster = _load_cluster(cluster_path)
    process_groups = {group.process_group_id: group for group in _load_status(status)}
    if process_group_id not in process_groups:
        raise typer.BadParameter(f"Process group {process_group_id} not found in {status}")
    pod_lookup, pvc_map = _observed_state(cluster, manifests, kubectl, kubectl_cmd)

    try:
        needs_removal = process_group_needs_removal(
            cluster, process_groups[process_group_id], pod_lookup, pvc_map
        )
    except ReplacementError as exc:
        typer.echo(f"{process_group_id}: undecided ({exc})")
        raise typer.Exit(code=2) from exc
    typer.echo(f"{process_group_id}: {'needs removal' if needs_removal else 'up to date'}")


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise typer.BadParameter(f"Unknown log level: {level}")
    logging.basicConfig(level=numeric, format="%(levelname)s: %(message)s")


def _load_cluster(path: Path) -> ClusterConfig:
    try:
        return load_cluster_config(path)
    except ClusterConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _load_status(path: Path) -> List[ProcessGroupStatus]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise typer.BadParameter(f"Status file not readable: {path}") from exc
    try:
        data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise typer.BadParameter(f"Status file {path} is not valid JSON/YAML: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("processGroups")
    if not isinstance(data, list):
        raise typer.BadParameter("Status file must contain a list of process groups")
    try:
        return [ProcessGroupStatus.from_dict(entry) for entry in data if isinstance(entry, dict)]
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _observed_state(
    cluster: ClusterConfig,
    manifests: Optional[List[Path]],
    kubectl: bool,
    kubectl_cmd: str,
) -> Tuple[PodLookup, Dict[str, Dict[str, Any]]]:
    if kubectl:
        client = KubectlClient(kubectl_cmd)
        try:
            return client, client.pvc_map(cluster)
        except ReplacementError as exc:
            raise typer.BadParameter(f"Failed to list PVCs: {exc}") from exc
    if not manifests:
        raise typer.BadParameter("Provide --manifests or --kubectl to read observed state.")
    try:
        store = ManifestStore.from_paths(manifests)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise typer.BadParameter(f"Failed to load manifests: {exc}") from exc
    return store, store.pvc_map(cluster)


if __name__ == "__main__":  # pragma: no cover
    app()
