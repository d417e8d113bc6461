"""Pytest configuration and fixtures for LWS controller tests."""

import copy
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest
from kubernetes import client


@pytest.fixture
def mock_cluster_connection():
    """Mock cluster connection for testing."""
    mock_conn = MagicMock()
    mock_conn.core_v1 = MagicMock(spec=client.CoreV1Api)
    mock_conn.apps_v1 = MagicMock(spec=client.AppsV1Api)
    mock_conn.custom_objects = MagicMock(spec=client.CustomObjectsApi)
    mock_conn.api_client = client.ApiClient()
    return mock_conn


@pytest.fixture
def api_client():
    """Real API client used for model serialization only."""
    return client.ApiClient()


@pytest.fixture
def settings():
    """Controller settings isolated from the environment."""
    from lws_controller import Settings

    return Settings(_env_file=None, request_timeout_seconds=10)


@pytest.fixture
def lws_dict():
    """LeaderWorkerSet as returned by the API server."""
    return {
        "apiVersion": "leaderworkerset.x-k8s.io/v1",
        "kind": "LeaderWorkerSet",
        "metadata": {
            "name": "test-lws",
            "namespace": "default",
            "uid": "lws-uid-1234",
            "resourceVersion": "42",
            "annotations": {"team": "inference"},
        },
        "spec": {
            "replicas": 2,
            "startupPolicy": "LeaderCreated",
            "rolloutStrategy": {"type": "RollingUpdate"},
            "leaderWorkerTemplate": {
                "size": 4,
                "restartPolicy": "RecreateGroupOnPodRestart",
                "workerTemplate": {
                    "metadata": {"labels": {"app": "worker"}},
                    "spec": {
                        "containers": [
                            {
                                "name": "worker",
                                "image": "vllm/vllm-openai:latest",
                                "resources": {"limits": {"nvidia.com/gpu": "8"}},
                            }
                        ]
                    },
                },
            },
        },
    }


@pytest.fixture
def sample_lws(lws_dict):
    """Parsed LeaderWorkerSet."""
    from lws_controller import LeaderWorkerSet

    return LeaderWorkerSet.from_dict(copy.deepcopy(lws_dict))


def make_pod(
    name,
    worker_index,
    namespace="default",
    group_index="0",
    lws_name="test-lws",
    phase="Running",
    restart_count=0,
    deleting=False,
    node_name=None,
    tpus=False,
    labels=None,
):
    """Build a pod of a LeaderWorkerSet group."""
    pod_labels = {
        "leaderworkerset.sigs.k8s.io/name": lws_name,
        "leaderworkerset.sigs.k8s.io/worker-index": str(worker_index),
        "leaderworkerset.sigs.k8s.io/group-index": group_index,
        "leaderworkerset.sigs.k8s.io/group-key": "group-key-abc",
        "leaderworkerset.sigs.k8s.io/template-revision-hash": "rev-hash-1",
    }
    if labels is not None:
        pod_labels = labels

    resources = None
    if tpus:
        resources = client.V1ResourceRequirements(limits={"google.com/tpu": "4"})

    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            uid=f"{name}-uid",
            labels=pod_labels,
            deletion_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc) if deleting else None,
        ),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name="main", image="busybox", resources=resources)],
            node_name=node_name,
        ),
        status=client.V1PodStatus(
            phase=phase,
            container_statuses=[
                client.V1ContainerStatus(
                    name="main",
                    image="busybox",
                    image_id="docker.io/library/busybox@sha256:abc",
                    ready=True,
                    restart_count=restart_count,
                )
            ],
        ),
    )


@pytest.fixture
def pod_factory():
    """Factory building LeaderWorkerSet pods."""
    return make_pod


@pytest.fixture
def leader_pod():
    """Healthy leader pod of group 0."""
    return make_pod("test-lws-0", 0)


@pytest.fixture
def worker_pod():
    """Healthy worker pod 1 of group 0."""
    return make_pod("test-lws-0-1", 1)


@pytest.fixture
def mock_leader_statefulset():
    """Mock leader StatefulSet object."""
    statefulset = Mock(spec=client.V1StatefulSet)
    statefulset.metadata = Mock()
    statefulset.metadata.name = "test-lws"
    statefulset.metadata.namespace = "default"

    statefulset.spec = Mock()
    statefulset.spec.replicas = 2

    statefulset.status = Mock()
    statefulset.status.ready_replicas = 2
    return statefulset
