"""Helpers for inspecting leader and worker pods."""

import re
from typing import Optional

from kubernetes.client import V1Container, V1Pod

from .models import LEADER_REQUESTS_TPUS_ANNOTATION_KEY, WORKER_INDEX_LABEL_KEY

TPU_RESOURCE_NAME = "google.com/tpu"

_ORDINAL_NAME = re.compile(r"^(.*)-([0-9]+)$")


def is_leader_pod(pod: V1Pod) -> bool:
    """Return True if the pod is the leader (worker index 0) of its group."""
    labels = pod.metadata.labels or {}
    return labels.get(WORKER_INDEX_LABEL_KEY) == "0"


def pod_deleted(pod: V1Pod) -> bool:
    """Return True if the pod has been marked for deletion."""
    return pod.metadata.deletion_timestamp is not None


def container_restarted(pod: V1Pod) -> bool:
    """Return True if any container of a live pod has restarted."""
    status = pod.status
    if status is None or status.phase not in ("Running", "Pending"):
        return False

    statuses = (status.init_container_statuses or []) + (status.container_statuses or [])
    return any((cs.restart_count or 0) > 0 for cs in statuses)


def get_parent_name_and_ordinal(pod_name: str) -> tuple[str, int]:
    """
    Split a statefulset pod name into its parent name and ordinal.

    Args:
        pod_name: Pod name such as ``mygroup-0-2``

    Returns:
        Tuple of (parent name, ordinal), or ("", -1) if the name has no ordinal
    """
    match = _ORDINAL_NAME.match(pod_name)
    if not match:
        return "", -1
    return match.group(1), int(match.group(2))


def _requests_tpus(containers: Optional[list[V1Container]]) -> bool:
    for container in containers or []:
        resources = container.resources
        if resources is None:
            continue
        for quantities in (resources.limits, resources.requests):
            if quantities and str(quantities.get(TPU_RESOURCE_NAME, "0")) not in ("", "0"):
                return True
    return False


def add_tpu_annotations(leader_pod: V1Pod, annotations: dict[str, str]) -> None:
    """Mark worker pods when their leader requests TPUs."""
    spec = leader_pod.spec
    if spec is None:
        return
    if _requests_tpus(spec.containers) or _requests_tpus(spec.init_containers):
        annotations[LEADER_REQUESTS_TPUS_ANNOTATION_KEY] = "true"
