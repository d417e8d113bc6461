"""Tests for ControllerRevision history primitives."""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from lws_controller.history import (
    ControllerHistory,
    controller_revision_name,
    equal_revision,
    find_equal_revisions,
    hash_controller_revision,
    new_controller_revision,
    sort_controller_revisions,
)


def make_revision(name, revision, data, owner_uid="lws-uid-1234", created=None):
    return client.V1ControllerRevision(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace="default",
            creation_timestamp=created,
            owner_references=[
                client.V1OwnerReference(
                    api_version="leaderworkerset.x-k8s.io/v1",
                    kind="LeaderWorkerSet",
                    name="test-lws",
                    uid=owner_uid,
                    controller=True,
                )
            ],
        ),
        data=data,
        revision=revision,
    )


class TestRevisionNaming:
    """Test cases for revision names and hashes."""

    def test_name_truncates_long_prefix(self):
        """Test the parent name is truncated to leave room for the hash."""
        name = controller_revision_name("x" * 300, "abc")
        assert name == "x" * 223 + "-abc"

    def test_name_short_prefix(self):
        """Test short parent names are kept."""
        assert controller_revision_name("test-lws", "abc") == "test-lws-abc"

    def test_hash_is_deterministic(self):
        """Test equal data hashes equally regardless of key order."""
        a = make_revision("a", 1, {"spec": {"size": 2, "replicas": 1}})
        b = make_revision("b", 5, {"spec": {"replicas": 1, "size": 2}})
        assert hash_controller_revision(a) == hash_controller_revision(b)

    def test_hash_changes_with_probe_and_data(self):
        """Test collision probes and data changes alter the hash."""
        a = make_revision("a", 1, {"spec": {"size": 2}})
        b = make_revision("b", 1, {"spec": {"size": 3}})
        assert hash_controller_revision(a, 0) != hash_controller_revision(a, 1)
        assert hash_controller_revision(a) != hash_controller_revision(b)

    def test_hash_is_name_safe(self):
        """Test hashes only contain safe characters."""
        value = hash_controller_revision(make_revision("a", 1, {"spec": {}}), 3)
        assert value
        assert set(value) <= set("bcdfghjklmnpqrstvwxz2456789")


class TestRevisionHelpers:
    """Test cases for sorting and comparing revisions."""

    def test_sort_by_revision_then_time_then_name(self):
        """Test revisions sort by number, creation time and name."""
        early = datetime(2024, 1, 1, tzinfo=timezone.utc)
        late = datetime(2024, 6, 1, tzinfo=timezone.utc)
        revisions = [
            make_revision("c", 2, {}, created=late),
            make_revision("b", 2, {}, created=early),
            make_revision("a", 3, {}, created=early),
            make_revision("z", 1, {}, created=late),
        ]

        sort_controller_revisions(revisions)

        assert [r.metadata.name for r in revisions] == ["z", "b", "c", "a"]

    def test_equal_revision(self):
        """Test equality compares data only."""
        a = make_revision("a", 1, {"spec": {"size": 2}})
        b = make_revision("b", 7, {"spec": {"size": 2}})
        c = make_revision("c", 1, {"spec": {"size": 3}})

        assert equal_revision(a, b) is True
        assert equal_revision(a, c) is False
        assert equal_revision(None, None) is True
        assert equal_revision(a, None) is False

    def test_find_equal_revisions(self):
        """Test equal revisions are returned in order."""
        a = make_revision("a", 1, {"spec": {"size": 2}})
        b = make_revision("b", 2, {"spec": {"size": 3}})
        c = make_revision("c", 3, {"spec": {"size": 2}})

        assert find_equal_revisions([a, b, c], make_revision("n", 4, {"spec": {"size": 2}})) == [a, c]

    def test_new_controller_revision(self, sample_lws):
        """Test new revisions are controlled by their LeaderWorkerSet."""
        revision = new_controller_revision(sample_lws, {"k": "v"}, {"spec": {}}, 3)

        assert revision.revision == 3
        assert revision.metadata.namespace == "default"
        assert revision.metadata.labels == {"k": "v"}
        owner = revision.metadata.owner_references[0]
        assert owner.kind == "LeaderWorkerSet"
        assert owner.uid == "lws-uid-1234"
        assert owner.controller is True
        assert owner.block_owner_deletion is True


class TestControllerHistory:
    """Test cases for ControllerHistory."""

    def test_list_filters_by_controller(self, mock_cluster_connection, sample_lws):
        """Test only revisions controlled by the parent are returned."""
        mine = make_revision("mine", 1, {})
        other = make_revision("other", 1, {}, owner_uid="another-uid")
        mock_list = Mock()
        mock_list.items = [mine, other]
        mock_cluster_connection.apps_v1.list_namespaced_controller_revision.return_value = mock_list

        history = ControllerHistory(mock_cluster_connection)
        result = history.list_controller_revisions(sample_lws, {"a": "b", "c": "d"})

        assert result == [mine]
        call_args = mock_cluster_connection.apps_v1.list_namespaced_controller_revision.call_args
        assert call_args.kwargs["namespace"] == "default"
        assert call_args.kwargs["label_selector"] == "a=b,c=d"

    def test_create_names_revision(self, mock_cluster_connection, sample_lws):
        """Test created revisions are named after parent and data hash."""
        apps = mock_cluster_connection.apps_v1
        apps.create_namespaced_controller_revision.side_effect = lambda namespace, body, **kw: body
        revision = new_controller_revision(sample_lws, {}, {"spec": {"size": 2}}, 1)

        history = ControllerHistory(mock_cluster_connection)
        created = history.create_controller_revision(sample_lws, revision)

        assert created.metadata.name == f"test-lws-{hash_controller_revision(revision, 0)}"
        assert revision.metadata.name is None

    def test_create_collision_probes_new_name(self, mock_cluster_connection, sample_lws):
        """Test a name taken by different data is retried with a new probe."""
        apps = mock_cluster_connection.apps_v1
        created_names = []

        def create(namespace, body, **kwargs):
            created_names.append(body.metadata.name)
            if len(created_names) == 1:
                raise ApiException(status=409, reason="AlreadyExists")
            return body

        apps.create_namespaced_controller_revision.side_effect = create
        apps.read_namespaced_controller_revision.return_value = make_revision(
            "taken", 1, {"spec": {"other": True}}
        )
        revision = new_controller_revision(sample_lws, {}, {"spec": {"size": 2}}, 1)

        history = ControllerHistory(mock_cluster_connection)
        created = history.create_controller_revision(sample_lws, revision)

        assert len(created_names) == 2
        assert created_names[0] != created_names[1]
        assert created.metadata.name == f"test-lws-{hash_controller_revision(revision, 1)}"

    def test_create_collision_with_equal_data(self, mock_cluster_connection, sample_lws):
        """Test an existing revision with equal data is returned."""
        apps = mock_cluster_connection.apps_v1
        apps.create_namespaced_controller_revision.side_effect = ApiException(status=409)
        existing = make_revision("test-lws-existing", 1, {"spec": {"size": 2}})
        apps.read_namespaced_controller_revision.return_value = existing
        revision = new_controller_revision(sample_lws, {}, {"spec": {"size": 2}}, 1)

        history = ControllerHistory(mock_cluster_connection)

        assert history.create_controller_revision(sample_lws, revision) is existing
        apps.create_namespaced_controller_revision.assert_called_once()

    def test_create_other_errors_propagate(self, mock_cluster_connection, sample_lws):
        """Test non-conflict errors are raised."""
        mock_cluster_connection.apps_v1.create_namespaced_controller_revision.side_effect = (
            ApiException(status=403)
        )
        revision = new_controller_revision(sample_lws, {}, {"spec": {}}, 1)

        history = ControllerHistory(mock_cluster_connection)
        with pytest.raises(ApiException):
            history.create_controller_revision(sample_lws, revision)

    def test_update_revision_number(self, mock_cluster_connection):
        """Test the revision number is replaced on the server."""
        apps = mock_cluster_connection.apps_v1
        apps.replace_namespaced_controller_revision.side_effect = lambda name, ns, body, **kw: body
        revision = make_revision("test-lws-a", 1, {"spec": {}})

        history = ControllerHistory(mock_cluster_connection)
        updated = history.update_controller_revision(revision, 3)

        assert updated.revision == 3
        assert revision.revision == 1
        assert apps.replace_namespaced_controller_revision.call_args.args[:2] == (
            "test-lws-a",
            "default",
        )

    def test_update_same_revision_is_noop(self, mock_cluster_connection):
        """Test updating to the current number makes no call."""
        revision = make_revision("test-lws-a", 2, {"spec": {}})

        history = ControllerHistory(mock_cluster_connection)

        assert history.update_controller_revision(revision, 2) is revision
        mock_cluster_connection.apps_v1.replace_namespaced_controller_revision.assert_not_called()

    def test_delete(self, mock_cluster_connection):
        """Test deleting a revision."""
        history = ControllerHistory(mock_cluster_connection, request_timeout=4)
        history.delete_controller_revision(make_revision("test-lws-a", 1, {}))

        mock_cluster_connection.apps_v1.delete_namespaced_controller_revision.assert_called_once_with(
            "test-lws-a", "default", _request_timeout=4
        )
