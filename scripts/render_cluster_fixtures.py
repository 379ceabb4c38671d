#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

import yaml

from src.cluster.config import ClusterConfig, load_cluster_config
from src.cluster.model import ProcessGroupStatus
from src.cluster.podspec import get_pod, get_pvc
from src.common.errors import ReplacementError


def load_process_groups(path: Path) -> List[ProcessGroupStatus]:
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if isinstance(data, dict):
        data = data.get("processGroups")
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of process groups")
    return [ProcessGroupStatus.from_dict(entry) for entry in data if isinstance(entry, dict)]


def render_documents(cluster: ClusterConfig, process_groups: Iterable[ProcessGroupStatus]) -> List[Dict[str, Any]]:
    documents: List[Dict[str, Any]] = []
    for process_group in process_groups:
        documents.append(get_pod(cluster, process_group))
        pvc = get_pvc(cluster, process_group)
        if pvc is not None:
            documents.append(pvc)
    return documents


def dump_manifests(docs: Sequence[Dict[str, Any]]) -> str:
    """Multi-document YAML, one Pod or PVC per document, keys in manifest order."""

    return yaml.safe_dump_all(docs, sort_keys=False, explicit_start=True)


def write_manifests(docs: Sequence[Dict[str, Any]], target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dump_manifests(docs), encoding="utf-8")


def apply_manifests(kubectl: str, docs: Sequence[Dict[str, Any]]) -> None:
    """Pipe the rendered manifests into ``kubectl apply -f -``."""

    if not docs:
        print("Nothing to apply.")
        return
    subprocess.run([kubectl, "apply", "-f", "-"], input=dump_manifests(docs), text=True, check=True)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render the desired Pods and PVCs of a cluster as manifests for offline replacement scans."
    )
    parser.add_argument("cluster", type=Path, help="Cluster configuration YAML/JSON file.")
    parser.add_argument("status", type=Path, help="Process group status file (JSON or YAML list).")
    parser.add_argument(
        "--out",
        type=Path,
        default=Path("data/observed.yaml"),
        help="Where to write the rendered manifests (default: data/observed.yaml).",
    )
    parser.add_argument(
        "--kubectl",
        default="kubectl",
        help="Kubectl binary to use when applying manifests (default: kubectl).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not call kubectl; only render the manifests.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    try:
        cluster = load_cluster_config(args.cluster)
        process_groups = load_process_groups(args.status)
        docs = render_documents(cluster, process_groups)
    except (ReplacementError, ValueError, OSError) as exc:
        print(f"failed to render manifests: {exc}", file=sys.stderr)
        sys.exit(1)
    write_manifests(docs, args.out)
    print(f"Rendered {len(docs)} document(s) for {len(process_groups)} process group(s) to {args.out}")
    if args.dry_run:
        return
    try:
        apply_manifests(args.kubectl, docs)
    except subprocess.CalledProcessError as exc:
        print(f"kubectl apply failed: {exc}", file=sys.stderr)
        sys.exit(exc.returncode)


if __name__ == "__main__":  # pragma: no cover
    main()
