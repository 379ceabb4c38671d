import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path

import typer
import yaml

from src.cluster.config import parse_cluster_config
from src.cluster.model import ProcessGroupStatus
from src.cluster.podspec import get_pod, get_pvc
from src.replacements import cli as replacements_cli

CLUSTER = {
    "apiVersion": "apps.foundationdb.org/v1beta2",
    "kind": "FoundationDBCluster",
    "metadata": {"name": "sample", "namespace": "default", "uid": "uid-1"},
    "spec": {"processes": {"general": {"podTemplate": {"spec": {"nodeSelector": {"zone": "a"}}}}}},
}


class ReplacementsCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        base = Path(self.tmpdir.name)

        cluster = parse_cluster_config(CLUSTER)
        groups = [
            ProcessGroupStatus("storage-1", "storage"),
            ProcessGroupStatus("storage-2", "storage"),
            ProcessGroupStatus("stateless-1", "stateless"),
        ]
        docs = []
        for group in groups:
            docs.append(get_pod(cluster, group))
            pvc = get_pvc(cluster, group)
            if pvc is not None:
                docs.append(pvc)
        # storage-2 was deployed with an older node selector.
        docs[2]["spec"]["nodeSelector"] = {"zone": "b"}
        docs[2]["metadata"]["annotations"]["foundationdb.org/last-applied-spec"] = "outdated"

        self.cluster_path = base / "cluster.yaml"
        self.cluster_path.write_text(yaml.safe_dump(CLUSTER), encoding="utf-8")
        self.status_path = base / "status.json"
        self.status_path.write_text(json.dumps([group.to_dict() for group in groups]), encoding="utf-8")
        self.manifests_path = base / "observed.yaml"
        self.manifests_path.write_text(yaml.safe_dump_all(docs), encoding="utf-8")
        self.out_path = base / "status.out.json"
        self.patch_path = base / "status.patch.json"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _scan(self, **overrides) -> None:
        kwargs = dict(
            cluster_path=self.cluster_path,
            status=self.status_path,
            manifests=[self.manifests_path],
            kubectl=False,
            kubectl_cmd="kubectl",
            out=self.out_path,
            patch_out=self.patch_path,
            log_level="INFO",
        )
        kwargs.update(overrides)
        replacements_cli.scan(**kwargs)

    def test_scan_marks_outdated_group(self) -> None:
        self._scan()

        status = json.loads(self.out_path.read_text(encoding="utf-8"))
        marked = [entry["processGroupID"] for entry in status if "removalTimestamp" in entry]
        self.assertEqual(marked, ["storage-2"])

        patch = json.loads(self.patch_path.read_text(encoding="utf-8"))
        self.assertEqual(len(patch), 1)
        self.assertEqual(patch[0]["op"], "add")
        self.assertEqual(patch[0]["path"], "/1/removalTimestamp")

    def test_rescan_is_idempotent(self) -> None:
        self._scan()
        self._scan(status=self.out_path, out=self.out_path)
        patch = json.loads(self.patch_path.read_text(encoding="utf-8"))
        self.assertEqual(patch, [])

    def test_scan_requires_observed_state(self) -> None:
        with self.assertRaises(typer.BadParameter):
            self._scan(manifests=None)

    def test_scan_rejects_unknown_log_level(self) -> None:
        with self.assertRaises(typer.BadParameter):
            self._scan(log_level="LOUD")

    def test_scan_rejects_invalid_status(self) -> None:
        self.status_path.write_text(json.dumps({"processGroups": "nope"}), encoding="utf-8")
        with self.assertRaises(typer.BadParameter):
            self._scan()

    def test_scan_rejects_negative_budget(self) -> None:
        cluster = dict(CLUSTER, spec={"automationOptions": {"maxConcurrentReplacements": -1}})
        self.cluster_path.write_text(yaml.safe_dump(cluster), encoding="utf-8")
        with self.assertRaises(typer.BadParameter):
            self._scan()
        self.assertFalse(self.out_path.exists())

    def _evaluate(self, process_group_id: str) -> str:
        buffer = io.StringIO()
        with contextlib.redirect_stdout(buffer):
            replacements_cli.evaluate(
                cluster_path=self.cluster_path,
                status=self.status_path,
                process_group_id=process_group_id,
                manifests=[self.manifests_path],
                kubectl=False,
                kubectl_cmd="kubectl",
                log_level="INFO",
            )
        return buffer.getvalue()

    def test_evaluate_single_group(self) -> None:
        self.assertEqual(self._evaluate("storage-2").strip(), "storage-2: needs removal")
        self.assertEqual(self._evaluate("storage-1").strip(), "storage-1: up to date")

    def test_evaluate_unknown_group(self) -> None:
        with self.assertRaises(typer.BadParameter):
            self._evaluate("storage-9")

    def test_evaluate_undecided_exits_with_code_two(self) -> None:
        self.status_path.write_text(
            json.dumps([{"processGroupID": "storage-x", "processClass": "storage"}]), encoding="utf-8"
        )
        with self.assertRaises(typer.Exit) as ctx:
            self._evaluate("storage-x")
        self.assertEqual(ctx.exception.exit_code, 2)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
