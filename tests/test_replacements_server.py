from fastapi.testclient import TestClient

from src.cluster.config import parse_cluster_config
from src.cluster.lookup import InMemoryPodLookup
from src.cluster.model import ProcessGroupStatus
from src.cluster.podspec import LAST_SPEC_KEY, get_pod, get_pvc
from src.replacements.server import app, get_pod_lookup_factory

CLUSTER = {"metadata": {"name": "sample", "namespace": "default", "uid": "uid-1"}}


def _observed(cluster_doc, group_ids):
    cluster = parse_cluster_config(cluster_doc)
    groups = [ProcessGroupStatus(group_id, group_id.rsplit("-", 1)[0]) for group_id in group_ids]
    pods = [get_pod(cluster, group) for group in groups]
    pvcs = [get_pvc(cluster, group) for group in groups]
    return [group.to_dict() for group in groups], pods, [pvc for pvc in pvcs if pvc is not None]


class TestReplacementsServer:
    def setup_method(self) -> None:
        self.client = TestClient(app)

    def test_scan_marks_groups_with_changed_servers_per_pod(self) -> None:
        groups, pods, pvcs = _observed(CLUSTER, ["storage-1", "storage-2", "log-1"])
        payload = {
            "cluster": dict(CLUSTER, storageServersPerPod=2),
            "processGroups": groups,
            "pods": pods,
            "pvcs": pvcs,
        }
        response = self.client.post("/scan", json=payload)
        assert response.status_code == 200
        body = response.json()
        assert body["hasReplacements"] is True
        assert body["marked"] == ["storage-1", "storage-2"]
        assert "removalTimestamp" not in body["processGroups"][2]

    def test_scan_skips_pods_whose_lookup_fails(self) -> None:
        groups, pods, pvcs = _observed(CLUSTER, ["storage-1", "storage-2"])
        app.dependency_overrides[get_pod_lookup_factory] = lambda: (
            lambda observed: InMemoryPodLookup(observed, failing=["sample-storage-1"])
        )
        try:
            payload = {
                "cluster": dict(
                    CLUSTER, storageServersPerPod=2, automationOptions={"maxConcurrentReplacements": 1}
                ),
                "processGroups": groups,
                "pods": pods,
                "pvcs": pvcs,
            }
            response = self.client.post("/scan", json=payload)
        finally:
            app.dependency_overrides.pop(get_pod_lookup_factory, None)
        assert response.status_code == 200
        body = response.json()
        assert body["marked"] == ["storage-2"]
        assert "removalTimestamp" not in body["processGroups"][0]

    def test_scan_without_changes(self) -> None:
        groups, pods, pvcs = _observed(CLUSTER, ["storage-1"])
        response = self.client.post(
            "/scan", json={"cluster": CLUSTER, "processGroups": groups, "pods": pods, "pvcs": pvcs}
        )
        assert response.status_code == 200
        assert response.json() == {"hasReplacements": False, "marked": [], "processGroups": groups}

    def test_scan_rejects_invalid_cluster(self) -> None:
        response = self.client.post("/scan", json={"cluster": {"metadata": {}}, "processGroups": []})
        assert response.status_code == 400

    def test_scan_rejects_negative_budget(self) -> None:
        cluster = dict(CLUSTER, automationOptions={"maxConcurrentReplacements": -3})
        response = self.client.post("/scan", json={"cluster": cluster, "processGroups": []})
        assert response.status_code == 400

    def test_evaluate_stale_pvc(self) -> None:
        groups, pods, pvcs = _observed(CLUSTER, ["storage-1"])
        pvcs[0]["metadata"]["annotations"][LAST_SPEC_KEY] = "stale"
        payload = {"cluster": CLUSTER, "processGroup": groups[0], "pod": pods[0], "pvc": pvcs[0]}
        response = self.client.post("/evaluate", json=payload)
        assert response.status_code == 200
        assert response.json() == {"needsRemoval": True}

    def test_evaluate_missing_pod(self) -> None:
        payload = {"cluster": CLUSTER, "processGroup": {"processGroupID": "storage-1", "processClass": "storage"}}
        response = self.client.post("/evaluate", json=payload)
        assert response.status_code == 200
        assert response.json() == {"needsRemoval": False}

    def test_evaluate_malformed_identifier(self) -> None:
        payload = {
            "cluster": CLUSTER,
            "processGroup": {"processGroupID": "storage-abc", "processClass": "storage"},
            "pod": {"metadata": {"name": "whatever"}},
        }
        response = self.client.post("/evaluate", json=payload)
        assert response.status_code == 422

    def test_evaluate_rejects_incomplete_status(self) -> None:
        payload = {"cluster": CLUSTER, "processGroup": {"processClass": "storage"}}
        response = self.client.post("/evaluate", json=payload)
        assert response.status_code == 400
