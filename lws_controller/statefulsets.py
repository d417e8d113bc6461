"""Worker StatefulSet construction and server-side apply."""

import copy
import logging
from typing import Any, Optional

from kubernetes.client import ApiClient, V1Pod, V1StatefulSet
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .errors import TemplateError, is_not_found
from .models import (
    EXCLUSIVE_KEY_ANNOTATION_KEY,
    GROUP_INDEX_LABEL_KEY,
    GROUP_UNIQUE_HASH_LABEL_KEY,
    LEADER_POD_NAME_ANNOTATION_KEY,
    SET_NAME_LABEL_KEY,
    SIZE_ANNOTATION_KEY,
    SUBGROUP_EXCLUSIVE_KEY_ANNOTATION_KEY,
    SUBGROUP_SIZE_ANNOTATION_KEY,
    TEMPLATE_REVISION_HASH_KEY,
    LeaderWorkerSet,
)
from .pods import add_tpu_annotations

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _prune(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def to_apply_configuration(obj: Any, api_client: ApiClient) -> dict[str, Any]:
    """
    Convert a typed object or raw mapping into a partial apply configuration.

    Unset (None) fields are dropped so that only fields with a value are
    claimed by the field manager.

    Args:
        obj: Kubernetes model object or mapping
        api_client: Client whose serializer converts typed models

    Returns:
        Generic camelCase mapping

    Raises:
        TemplateError: If obj cannot be converted to a mapping
    """
    try:
        data = api_client.sanitize_for_serialization(copy.deepcopy(obj))
    except (AttributeError, TypeError, ValueError) as e:
        raise TemplateError(f"Converting template for apply: {e}") from e

    if not isinstance(data, dict):
        raise TemplateError(f"Expected a mapping, got {type(data).__name__}")
    return _prune(data)


def validate_pod_template(template: dict[str, Any]) -> None:
    """
    Check the shape of a pod template before it is applied.

    Only the structure the controller writes into is checked, the API server
    validates the rest of the pod spec.

    Raises:
        TemplateError: If the template is malformed
    """
    metadata = template.get("metadata", {})
    if not isinstance(metadata, dict):
        raise TemplateError("Pod template metadata must be a mapping")
    for field in ("labels", "annotations"):
        if not isinstance(metadata.get(field, {}), dict):
            raise TemplateError(f"Pod template metadata.{field} must be a mapping")

    spec = template.get("spec")
    if not isinstance(spec, dict):
        raise TemplateError("Pod template spec must be a mapping")
    containers = spec.get("containers")
    if not isinstance(containers, list) or not containers:
        raise TemplateError("Pod template must define at least one container")
    if not all(isinstance(c, dict) and c.get("name") for c in containers):
        raise TemplateError("Every container of the pod template needs a name")
    if not isinstance(spec.get("nodeSelector", {}), dict):
        raise TemplateError("Pod template spec.nodeSelector must be a mapping")


def construct_worker_statefulset(
    leader_pod: V1Pod, lws: LeaderWorkerSet, api_client: ApiClient
) -> dict[str, Any]:
    """
    Build the apply configuration of the worker StatefulSet for a leader pod.

    Args:
        leader_pod: Leader pod of the group
        lws: LeaderWorkerSet owning the group
        api_client: Client used to serialize the worker template

    Returns:
        StatefulSet apply configuration named after the leader pod

    Raises:
        TemplateError: If the worker template is malformed
    """
    template_spec = lws.spec.leader_worker_template
    template = to_apply_configuration(template_spec.worker_template, api_client)
    validate_pod_template(template)

    leader_labels = leader_pod.metadata.labels or {}
    # The selector must stay stable across template revisions
    selector = {
        GROUP_INDEX_LABEL_KEY: leader_labels.get(GROUP_INDEX_LABEL_KEY, ""),
        SET_NAME_LABEL_KEY: lws.name,
        GROUP_UNIQUE_HASH_LABEL_KEY: leader_labels.get(GROUP_UNIQUE_HASH_LABEL_KEY, ""),
    }
    labels = {
        **selector,
        TEMPLATE_REVISION_HASH_KEY: leader_labels.get(TEMPLATE_REVISION_HASH_KEY, ""),
    }

    annotations = {
        SIZE_ANNOTATION_KEY: str(template_spec.size),
        LEADER_POD_NAME_ANNOTATION_KEY: leader_pod.metadata.name,
    }
    lws_annotations = lws.metadata.annotations
    if lws_annotations.get(EXCLUSIVE_KEY_ANNOTATION_KEY):
        annotations[EXCLUSIVE_KEY_ANNOTATION_KEY] = lws_annotations[EXCLUSIVE_KEY_ANNOTATION_KEY]
    if template_spec.sub_group_policy is not None:
        annotations[SUBGROUP_SIZE_ANNOTATION_KEY] = str(
            template_spec.sub_group_policy.sub_group_size
        )
        if lws_annotations.get(SUBGROUP_EXCLUSIVE_KEY_ANNOTATION_KEY):
            annotations[SUBGROUP_EXCLUSIVE_KEY_ANNOTATION_KEY] = lws_annotations[
                SUBGROUP_EXCLUSIVE_KEY_ANNOTATION_KEY
            ]
    add_tpu_annotations(leader_pod, annotations)

    metadata = template.setdefault("metadata", {})
    metadata.setdefault("labels", {}).update(labels)
    metadata.setdefault("annotations", {}).update(annotations)

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": leader_pod.metadata.name,
            "namespace": leader_pod.metadata.namespace,
            "labels": dict(labels),
        },
        "spec": {
            "serviceName": lws.name,
            "replicas": template_spec.size - 1,
            # Workers depend on the leader, not on each other
            "podManagementPolicy": "Parallel",
            "template": template,
            "ordinals": {"start": 1},
            "selector": {"matchLabels": selector},
        },
    }


def set_controller_reference(owner: V1Pod, statefulset: dict[str, Any]) -> None:
    """Make the leader pod the controlling owner of the worker StatefulSet."""
    reference = {
        "apiVersion": owner.api_version or "v1",
        "kind": owner.kind or "Pod",
        "name": owner.metadata.name,
        "uid": owner.metadata.uid,
        "blockOwnerDeletion": True,
        "controller": True,
    }
    statefulset["metadata"].setdefault("ownerReferences", []).append(reference)


def set_node_selector(statefulset: dict[str, Any], topology_key: str, topology_value: str) -> None:
    """Pin worker pods to the topology domain of their leader."""
    pod_spec = statefulset["spec"]["template"].setdefault("spec", {})
    pod_spec.setdefault("nodeSelector", {})[topology_key] = topology_value


class StatefulSetManager:
    """Manages Kubernetes StatefulSet operations."""

    def __init__(
        self,
        cluster: ClusterConnection,
        field_manager: str = "lws",
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize statefulset manager.

        Args:
            cluster: Cluster connection
            field_manager: Field manager identity for server-side apply
            request_timeout: Timeout applied to each API call (seconds)
        """
        self.cluster = cluster
        self.apps_v1 = cluster.apps_v1
        self.field_manager = field_manager
        self.request_timeout = request_timeout

    def get(self, name: str, namespace: str = "default") -> Optional[V1StatefulSet]:
        """
        Get a statefulset.

        Args:
            name: StatefulSet name
            namespace: Kubernetes namespace

        Returns:
            V1StatefulSet or None if not found
        """
        try:
            return self.apps_v1.read_namespaced_stateful_set(
                name, namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def is_ready(self, name: str, namespace: str = "default") -> bool:
        """
        Check whether all desired replicas of a statefulset are ready.

        Args:
            name: StatefulSet name
            namespace: Kubernetes namespace

        Returns:
            True if ready replicas reached the desired count, False otherwise
            (including when the statefulset does not exist)
        """
        statefulset = self.get(name, namespace)
        if statefulset is None:
            return False

        desired = statefulset.spec.replicas if statefulset.spec.replicas is not None else 1
        ready = (statefulset.status.ready_replicas if statefulset.status else None) or 0
        return ready >= desired

    def apply(self, statefulset: dict[str, Any]) -> V1StatefulSet:
        """
        Server-side apply a statefulset configuration.

        Conflicts on fields owned by other managers are force-overwritten.

        Args:
            statefulset: StatefulSet apply configuration

        Returns:
            Applied V1StatefulSet

        Raises:
            ApiException: If the apply fails
        """
        metadata = statefulset["metadata"]
        return self.apps_v1.patch_namespaced_stateful_set(
            name=metadata["name"],
            namespace=metadata["namespace"],
            body=statefulset,
            field_manager=self.field_manager,
            force=True,
            _content_type=APPLY_PATCH_CONTENT_TYPE,
            _request_timeout=self.request_timeout,
        )
