"""Tests for TopologyResolver."""

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from lws_controller import TopologyError, TopologyResolver


def make_node(name, labels):
    return client.V1Node(metadata=client.V1ObjectMeta(name=name, labels=labels))


class TestTopologyResolver:
    """Test cases for TopologyResolver."""

    def test_topology_value(self, mock_cluster_connection, pod_factory):
        """Test the topology label is read from the leader's node."""
        mock_cluster_connection.core_v1.read_node.return_value = make_node(
            "node-a", {"cloud.google.com/gke-nodepool": "pool-1"}
        )
        resolver = TopologyResolver(mock_cluster_connection, request_timeout=3)
        leader = pod_factory("test-lws-0", 0, node_name="node-a")

        value = resolver.topology_value(leader, "cloud.google.com/gke-nodepool")

        assert value == "pool-1"
        mock_cluster_connection.core_v1.read_node.assert_called_once_with(
            "node-a", _request_timeout=3
        )

    def test_missing_node_is_ignored(self, mock_cluster_connection, pod_factory):
        """Test a vanished node yields no value instead of an error."""
        mock_cluster_connection.core_v1.read_node.side_effect = ApiException(status=404)
        resolver = TopologyResolver(mock_cluster_connection)
        leader = pod_factory("test-lws-0", 0, node_name="node-a")

        assert resolver.topology_value(leader, "cloud.google.com/gke-nodepool") is None

    def test_missing_label_raises(self, mock_cluster_connection, pod_factory):
        """Test a node without the topology label is a hard error."""
        mock_cluster_connection.core_v1.read_node.return_value = make_node("node-a", {})
        resolver = TopologyResolver(mock_cluster_connection)
        leader = pod_factory("test-lws-0", 0, node_name="node-a")

        with pytest.raises(TopologyError):
            resolver.topology_value(leader, "cloud.google.com/gke-nodepool")

    def test_api_errors_propagate(self, mock_cluster_connection, pod_factory):
        """Test transient API errors are raised to the caller."""
        mock_cluster_connection.core_v1.read_node.side_effect = ApiException(status=503)
        resolver = TopologyResolver(mock_cluster_connection)
        leader = pod_factory("test-lws-0", 0, node_name="node-a")

        with pytest.raises(ApiException):
            resolver.topology_value(leader, "cloud.google.com/gke-nodepool")
