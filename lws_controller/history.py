"""ControllerRevision history primitives."""

import copy
import json
import logging
from typing import Any, Optional

from kubernetes.client import (
    V1ControllerRevision,
    V1ObjectMeta,
    V1OwnerReference,
)
from kubernetes.client.exceptions import ApiException

from .cluster import ClusterConnection
from .errors import is_already_exists
from .models import API_VERSION, KIND, LeaderWorkerSet

logger = logging.getLogger(__name__)

# Leaves room for "-" and the hash in a 253 character name
MAX_PREFIX_LENGTH = 223

_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_SAFE_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"


def _fnv32(data: bytes, h: int = _FNV32_OFFSET) -> int:
    for byte in data:
        h = (h * _FNV32_PRIME) & 0xFFFFFFFF
        h ^= byte
    return h


def _safe_encode(value: str) -> str:
    return "".join(_SAFE_ALPHANUMS[ord(c) % len(_SAFE_ALPHANUMS)] for c in value)


def canonical_data(data: Any) -> bytes:
    """Serialize revision data deterministically."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def hash_controller_revision(revision: V1ControllerRevision, probe: Optional[int] = None) -> str:
    """
    Hash the data of a revision, mixing in the collision probe if given.

    Returns:
        Name-safe hash string
    """
    h = _fnv32(canonical_data(revision.data)) if revision.data is not None else _FNV32_OFFSET
    if probe is not None:
        h = _fnv32(str(probe).encode("utf-8"), h)
    return _safe_encode(str(h))


def controller_revision_name(prefix: str, hash_value: str) -> str:
    """Name a revision after its parent, truncating long parent names."""
    if len(prefix) > MAX_PREFIX_LENGTH:
        prefix = prefix[:MAX_PREFIX_LENGTH]
    return f"{prefix}-{hash_value}"


def get_controller_of(revision: V1ControllerRevision) -> Optional[V1OwnerReference]:
    """Return the controlling owner reference of a revision, if any."""
    for reference in revision.metadata.owner_references or []:
        if reference.controller:
            return reference
    return None


def new_controller_revision(
    parent: LeaderWorkerSet,
    labels: dict[str, str],
    data: dict[str, Any],
    revision: int,
) -> V1ControllerRevision:
    """
    Build an unsaved revision owned by parent.

    The name is assigned when the revision is created.
    """
    return V1ControllerRevision(
        api_version="apps/v1",
        kind="ControllerRevision",
        metadata=V1ObjectMeta(
            namespace=parent.namespace,
            labels=dict(labels),
            owner_references=[
                V1OwnerReference(
                    api_version=API_VERSION,
                    kind=KIND,
                    name=parent.name,
                    uid=parent.metadata.uid,
                    block_owner_deletion=True,
                    controller=True,
                )
            ],
        ),
        data=data,
        revision=revision,
    )


def _sort_key(revision: V1ControllerRevision) -> tuple[int, float, str]:
    created = revision.metadata.creation_timestamp
    return (
        revision.revision,
        created.timestamp() if created is not None else 0.0,
        revision.metadata.name or "",
    )


def sort_controller_revisions(revisions: list[V1ControllerRevision]) -> None:
    """Sort revisions in place by revision number, creation time and name."""
    revisions.sort(key=_sort_key)


def equal_revision(lhs: Optional[V1ControllerRevision], rhs: Optional[V1ControllerRevision]) -> bool:
    """Return True if two revisions hold structurally equal data."""
    if lhs is None or rhs is None:
        return lhs is rhs
    return lhs.data == rhs.data


def find_equal_revisions(
    revisions: list[V1ControllerRevision], needle: V1ControllerRevision
) -> list[V1ControllerRevision]:
    """Return the revisions whose data equals needle's, preserving order."""
    return [revision for revision in revisions if equal_revision(revision, needle)]


class ControllerHistory:
    """Reads and writes the ControllerRevisions owned by a LeaderWorkerSet."""

    def __init__(self, cluster: ClusterConnection, request_timeout: Optional[float] = None):
        """
        Initialize controller history.

        Args:
            cluster: Cluster connection
            request_timeout: Timeout applied to each API call (seconds)
        """
        self.cluster = cluster
        self.apps_v1 = cluster.apps_v1
        self.request_timeout = request_timeout

    def list_controller_revisions(
        self, parent: LeaderWorkerSet, labels: Optional[dict[str, str]] = None
    ) -> list[V1ControllerRevision]:
        """
        List revisions controlled by parent.

        Args:
            parent: Owning LeaderWorkerSet
            labels: Label selector dict

        Returns:
            Revisions whose controller reference points at parent
        """
        label_selector = None
        if labels:
            label_selector = ",".join([f"{k}={v}" for k, v in labels.items()])

        result = self.apps_v1.list_namespaced_controller_revision(
            namespace=parent.namespace,
            label_selector=label_selector,
            _request_timeout=self.request_timeout,
        )
        owned = []
        for revision in result.items:
            reference = get_controller_of(revision)
            if reference is not None and reference.uid == parent.metadata.uid:
                owned.append(revision)
        return owned

    def create_controller_revision(
        self, parent: LeaderWorkerSet, revision: V1ControllerRevision, collision_count: int = 0
    ) -> V1ControllerRevision:
        """
        Persist revision under a name derived from its data.

        On a name collision with different data the collision count is
        increased until a free name is found. If the existing revision holds
        the same data it is returned instead.

        Raises:
            ApiException: If creation fails for any other reason
        """
        clone = copy.deepcopy(revision)
        while True:
            clone.metadata.name = controller_revision_name(
                parent.name, hash_controller_revision(revision, collision_count)
            )
            try:
                return self.apps_v1.create_namespaced_controller_revision(
                    namespace=parent.namespace,
                    body=clone,
                    _request_timeout=self.request_timeout,
                )
            except ApiException as e:
                if not is_already_exists(e):
                    raise
            existing = self.apps_v1.read_namespaced_controller_revision(
                clone.metadata.name, parent.namespace, _request_timeout=self.request_timeout
            )
            if equal_revision(existing, clone):
                return existing
            logger.debug(f"Revision name {clone.metadata.name} collides, probing again")
            collision_count += 1

    def update_controller_revision(
        self, revision: V1ControllerRevision, new_revision: int
    ) -> V1ControllerRevision:
        """
        Set the revision number of an existing revision.

        Raises:
            ApiException: If the update fails
        """
        if revision.revision == new_revision:
            return revision
        clone = copy.deepcopy(revision)
        clone.revision = new_revision
        return self.apps_v1.replace_namespaced_controller_revision(
            clone.metadata.name,
            clone.metadata.namespace,
            clone,
            _request_timeout=self.request_timeout,
        )

    def delete_controller_revision(self, revision: V1ControllerRevision) -> None:
        """
        Delete a revision.

        Raises:
            ApiException: If the deletion fails
        """
        self.apps_v1.delete_namespaced_controller_revision(
            revision.metadata.name,
            revision.metadata.namespace,
            _request_timeout=self.request_timeout,
        )
