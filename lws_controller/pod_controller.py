"""Pod reconciler: creates worker statefulsets for leader pods."""

import logging
from typing import Optional

from kubernetes.client import V1DeleteOptions, V1Pod
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .config import Settings
from .errors import MissingLabelError, PodNameParseError, is_not_found
from .models import (
    EXCLUSIVE_KEY_ANNOTATION_KEY,
    GROUP,
    PLURAL,
    SET_NAME_LABEL_KEY,
    VERSION,
    WORKER_INDEX_LABEL_KEY,
    LeaderWorkerSet,
    ReconcileRequest,
    ReconcileResult,
    RestartPolicy,
    StartupPolicy,
)
from .pods import container_restarted, get_parent_name_and_ordinal, is_leader_pod, pod_deleted
from .statefulsets import (
    StatefulSetManager,
    construct_worker_statefulset,
    set_controller_reference,
    set_node_selector,
)
from .topology import TopologyResolver

logger = logging.getLogger(__name__)


class PodReconciler:
    """
    Reconciles leader and worker pods of LeaderWorkerSet groups.

    For every leader pod, converges the worker statefulset named after it.
    For every pod, enforces the RecreateGroupOnPodRestart restart policy.
    Each call re-reads cluster state and is safe to repeat.
    """

    def __init__(self, cluster: ClusterConnection, settings: Settings):
        """
        Initialize pod reconciler.

        Args:
            cluster: Cluster connection
            settings: Controller settings
        """
        self.cluster = cluster
        self.settings = settings
        self.core_v1 = cluster.core_v1
        self.custom_objects = cluster.custom_objects
        self.request_timeout = settings.request_timeout_seconds
        self.statefulsets = StatefulSetManager(
            cluster,
            field_manager=settings.field_manager,
            request_timeout=self.request_timeout,
        )
        self.topology = TopologyResolver(cluster, request_timeout=self.request_timeout)

    def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """
        Reconcile the pod identified by request.

        Args:
            request: Pod namespace and name

        Returns:
            ReconcileResult, requeue is set when waiting on the node of the leader

        Raises:
            MissingLabelError: If the pod lacks its group labels
            PodNameParseError: If a worker pod name has no ordinal
            TemplateError: If the worker template is malformed
            TopologyError: If the leader's node lacks the topology label
            ApiException: On any other API failure
        """
        pod = self._get_pod(request.name, request.namespace)
        if pod is None:
            # Owned resources are garbage collected with the pod
            return ReconcileResult()

        labels = pod.metadata.labels or {}
        lws_name = labels.get(SET_NAME_LABEL_KEY)
        if not lws_name:
            raise MissingLabelError(f"{SET_NAME_LABEL_KEY} label is unexpectedly missing")
        if WORKER_INDEX_LABEL_KEY not in labels:
            raise MissingLabelError(f"{WORKER_INDEX_LABEL_KEY} label is unexpectedly missing")

        lws = self._get_leader_worker_set(lws_name, request.namespace)
        if lws is None:
            # Deleted, pods are garbage collected eventually
            return ReconcileResult()

        if self.handle_restart_policy(pod, lws):
            logger.debug(f"Restarting the group of pod {request.key}")
            return ReconcileResult()

        # Worker pods are only reconciled to enforce the restart policy
        if not is_leader_pod(pod):
            return ReconcileResult()

        # Never create workers for a terminating leader, the group may be restarting
        if pod_deleted(pod):
            logger.debug(f"Skip creating the worker sts since leader {request.key} is being deleted")
            return ReconcileResult()

        if lws.spec.startup_policy == StartupPolicy.LEADER_READY:
            if not self.statefulsets.is_ready(lws_name, request.namespace):
                logger.debug(f"Leader statefulset {lws_name} not ready, deferring workers")
                # The leader statefulset is owned by the LeaderWorkerSet, so its
                # readiness changes never re-queue this pod
                return ReconcileResult(
                    requeue=True, requeue_after=self.settings.defer_requeue_seconds
                )

        statefulset = construct_worker_statefulset(pod, lws, self.cluster.api_client)

        topology_key = lws.metadata.annotations.get(EXCLUSIVE_KEY_ANNOTATION_KEY)
        if topology_key is not None:
            if not pod.spec.node_name:
                logger.debug(f"Pod {request.key} is not scheduled yet")
                return ReconcileResult()
            topology_value = self.topology.topology_value(pod, topology_key)
            if topology_value is None:
                return ReconcileResult(
                    requeue=True, requeue_after=self.settings.defer_requeue_seconds
                )
            # Workers already placed elsewhere are moved by the apply below
            set_node_selector(statefulset, topology_key, topology_value)

        set_controller_reference(pod, statefulset)

        try:
            self.statefulsets.apply(statefulset)
        except ApiException as e:
            if is_not_found(e):
                return ReconcileResult()
            raise

        logger.debug(f"Worker reconcile of {request.key} completed")
        return ReconcileResult()

    def handle_restart_policy(self, pod: V1Pod, lws: LeaderWorkerSet) -> bool:
        """
        Delete the group's leader if a member restarted under RecreateGroupOnPodRestart.

        Args:
            pod: Leader or worker pod that triggered the reconcile
            lws: LeaderWorkerSet of the pod

        Returns:
            True if the group is being restarted, False otherwise

        Raises:
            PodNameParseError: If the worker pod name has no ordinal
            ApiException: If reading or deleting the leader fails
        """
        template = lws.spec.leader_worker_template
        if template.restart_policy != RestartPolicy.RECREATE_GROUP_ON_POD_RESTART:
            return False
        if not container_restarted(pod) and not pod_deleted(pod):
            return False

        if is_leader_pod(pod):
            leader = pod
        else:
            leader_name, ordinal = get_parent_name_and_ordinal(pod.metadata.name)
            if ordinal == -1:
                raise PodNameParseError(f"parsing pod name for pod {pod.metadata.name}")
            leader = self._get_pod(leader_name, pod.metadata.namespace)
            if leader is None:
                # Leader already gone, the group is being recreated
                return True

        # A terminating leader means the restart is already in progress
        if pod_deleted(leader):
            return True

        logger.info(
            f"Deleting leader {leader.metadata.namespace}/{leader.metadata.name} "
            f"to recreate its group after pod {pod.metadata.name} restarted"
        )
        try:
            self.core_v1.delete_namespaced_pod(
                leader.metadata.name,
                leader.metadata.namespace,
                body=V1DeleteOptions(propagation_policy="Foreground"),
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if not is_not_found(e):
                raise
        return True

    def _get_pod(self, name: str, namespace: str) -> Optional[V1Pod]:
        try:
            return self.core_v1.read_namespaced_pod(
                name, namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def _get_leader_worker_set(self, name: str, namespace: str) -> Optional[LeaderWorkerSet]:
        try:
            obj = self.custom_objects.get_namespaced_custom_object(
                GROUP, VERSION, namespace, PLURAL, name, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise
        return LeaderWorkerSet.from_dict(obj)
