"""Topology lookups for exclusive placement."""

import logging
from typing import Optional

from kubernetes.client import V1Pod
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .errors import TopologyError, is_not_found

logger = logging.getLogger(__name__)


class TopologyResolver:
    """Resolves the topology domain a leader pod is scheduled into."""

    def __init__(self, cluster: ClusterConnection, request_timeout: Optional[float] = None):
        """
        Initialize topology resolver.

        Args:
            cluster: Cluster connection
            request_timeout: Timeout applied to each API call (seconds)
        """
        self.cluster = cluster
        self.core_v1 = cluster.core_v1
        self.request_timeout = request_timeout

    def topology_value(self, pod: V1Pod, topology_key: str) -> Optional[str]:
        """
        Get the topology label value of the node hosting a pod.

        Args:
            pod: Scheduled leader pod
            topology_key: Node label naming the topology domain

        Returns:
            Label value, or None if the node does not exist (anymore)

        Raises:
            TopologyError: If the node lacks the topology label
            ApiException: If the node lookup fails
        """
        node_name = pod.spec.node_name
        try:
            node = self.core_v1.read_node(node_name, _request_timeout=self.request_timeout)
        except ApiException as e:
            # Nodes can disappear temporarily, e.g. during maintenance
            if is_not_found(e):
                logger.warning(f"Node {node_name} of pod {pod.metadata.name} not found")
                return None
            raise

        labels = node.metadata.labels or {}
        if topology_key not in labels:
            raise TopologyError(
                f"Node {node_name} does not have topology label {topology_key}"
            )
        return labels[topology_key]
