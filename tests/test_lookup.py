import json
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from src.cluster.config import parse_cluster_config
from src.cluster.lookup import InMemoryPodLookup, KubectlClient, ManifestStore, build_pvc_map
from src.cluster.model import ProcessGroupStatus
from src.cluster.podspec import CLUSTER_LABEL, get_pod, get_pvc
from src.common.errors import LookupFailed


def _cluster(name="sample", namespace="default"):
    return parse_cluster_config({"metadata": {"name": name, "namespace": namespace, "uid": "uid-1"}})


class ManifestStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.cluster = _cluster()
        self.group = ProcessGroupStatus("storage-1", "storage")
        self.pod = get_pod(self.cluster, self.group)
        self.pvc = get_pvc(self.cluster, self.group)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_loads_multi_document_yaml(self) -> None:
        path = self.base / "observed.yaml"
        path.write_text(yaml.safe_dump_all([self.pod, self.pvc]), encoding="utf-8")
        store = ManifestStore.from_paths([path])
        self.assertEqual(store.get_pod(self.cluster, "sample-storage-1")["kind"], "Pod")
        self.assertIsNone(store.get_pod(self.cluster, "sample-storage-2"))
        self.assertEqual(list(store.pvc_map(self.cluster)), ["storage-1"])

    def test_loads_json_list_documents(self) -> None:
        path = self.base / "observed.json"
        path.write_text(json.dumps({"kind": "List", "items": [self.pod, self.pvc]}), encoding="utf-8")
        store = ManifestStore.from_paths([path])
        self.assertEqual(len(store.pods), 1)
        self.assertEqual(len(store.pvcs), 1)

    def test_loads_directories(self) -> None:
        (self.base / "pod.yaml").write_text(yaml.safe_dump(self.pod), encoding="utf-8")
        (self.base / "pvc.yml").write_text(yaml.safe_dump(self.pvc), encoding="utf-8")
        (self.base / "notes.txt").write_text("ignored", encoding="utf-8")
        store = ManifestStore.from_paths([self.base])
        self.assertIn("sample-storage-1", store.pods)
        self.assertEqual(len(store.pvcs), 1)

    def test_missing_path_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            ManifestStore.from_paths([self.base / "missing.yaml"])

    def test_pvc_map_filters_other_clusters(self) -> None:
        other = get_pvc(_cluster(name="other"), ProcessGroupStatus("storage-2", "storage"))
        foreign_namespace = get_pvc(_cluster(namespace="elsewhere"), ProcessGroupStatus("storage-3", "storage"))
        unlabelled = {"kind": "PersistentVolumeClaim", "metadata": {"name": "loose"}}
        store = ManifestStore([], [self.pvc, other, foreign_namespace, unlabelled])
        self.assertEqual(list(store.pvc_map(self.cluster)), ["storage-1"])


class InMemoryPodLookupTests(unittest.TestCase):
    def test_failing_names_raise(self) -> None:
        cluster = _cluster()
        lookup = InMemoryPodLookup([{"metadata": {"name": "a"}}], failing=["b"])
        self.assertEqual(lookup.get_pod(cluster, "a"), {"metadata": {"name": "a"}})
        self.assertIsNone(lookup.get_pod(cluster, "c"))
        with self.assertRaises(LookupFailed):
            lookup.get_pod(cluster, "b")

    def test_build_pvc_map_keys_by_process_group(self) -> None:
        cluster = _cluster()
        pvc = get_pvc(cluster, ProcessGroupStatus("log-4", "log"))
        self.assertEqual(build_pvc_map([pvc, {"metadata": {}}]), {"log-4": pvc})


class KubectlClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.cluster = _cluster(namespace="fdb")
        self.client = KubectlClient("kubectl", context="kind-test")

    def test_get_pod_builds_command(self) -> None:
        with mock.patch.object(self.client, "_run_command", return_value=json.dumps({"kind": "Pod"})) as run:
            self.assertEqual(self.client.get_pod(self.cluster, "sample-storage-1"), {"kind": "Pod"})
        run.assert_called_once_with(
            ["kubectl", "--context", "kind-test", "get", "pod", "sample-storage-1", "-n", "fdb", "-o", "json"]
        )

    def test_not_found_is_none(self) -> None:
        error = subprocess.CalledProcessError(1, ["kubectl"], stderr='Error from server (NotFound): pods "x" not found')
        with mock.patch("src.cluster.lookup.subprocess.run", side_effect=error):
            self.assertIsNone(self.client.get_pod(self.cluster, "x"))

    def test_other_failures_raise_lookup_failed(self) -> None:
        failures = [
            subprocess.CalledProcessError(1, ["kubectl"], stderr="connection refused"),
            subprocess.TimeoutExpired(["kubectl"], 30),
            FileNotFoundError("kubectl"),
        ]
        for failure in failures:
            with self.subTest(failure=type(failure).__name__):
                with mock.patch("src.cluster.lookup.subprocess.run", side_effect=failure):
                    with self.assertRaises(LookupFailed):
                        self.client.get_pod(self.cluster, "x")

    def test_unparsable_output_raises(self) -> None:
        with mock.patch.object(self.client, "_run_command", return_value="not json"):
            with self.assertRaises(LookupFailed):
                self.client.get_pod(self.cluster, "x")

    def test_pvc_map_uses_cluster_label(self) -> None:
        pvc = get_pvc(self.cluster, ProcessGroupStatus("storage-1", "storage"))
        payload = json.dumps({"items": [pvc]})
        with mock.patch.object(self.client, "_run_command", return_value=payload) as run:
            self.assertEqual(self.client.pvc_map(self.cluster), {"storage-1": pvc})
        command = run.call_args[0][0]
        self.assertIn(f"{CLUSTER_LABEL}=sample", command)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
