"""Cluster configuration, process group status and desired/observed Pod state."""

from .config import ClusterConfig, load_cluster_config, parse_cluster_config
from .model import ProcessGroupStatus

__all__ = [
    "ClusterConfig",
    "ProcessGroupStatus",
    "load_cluster_config",
    "parse_cluster_config",
]
