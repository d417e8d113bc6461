"""LeaderWorkerSet revision history.

Each distinct LeaderWorkerSet spec is stored once as a ControllerRevision
holding a patch that replaces the whole spec. Revisions are labelled with the
template hash they were recorded for and numbered in increasing order.
"""

import logging
from typing import Any, Optional

from kubernetes.client import V1ControllerRevision

from .cluster import ClusterConnection
from .errors import RevisionConflictError, RevisionNotFoundError
from .history import (
    ControllerHistory,
    equal_revision,
    find_equal_revisions,
    new_controller_revision,
    sort_controller_revisions,
)
from .models import TEMPLATE_REVISION_HASH_KEY, LeaderWorkerSet
from .patch import PATCH_DIRECTIVE, REPLACE, strategic_merge

logger = logging.getLogger(__name__)


def get_patch(lws: LeaderWorkerSet) -> dict[str, Any]:
    """
    Build a patch that restores the spec of lws onto any LeaderWorkerSet.

    The spec is marked with a replace directive so that applying the patch
    overwrites the target spec instead of merging into it.
    """
    raw = lws.to_dict()
    spec = raw["spec"]
    spec[PATCH_DIRECTIVE] = REPLACE
    return {"spec": spec}


def new_revision(lws: LeaderWorkerSet, revision: int, template_hash: str) -> V1ControllerRevision:
    """
    Create an unsaved revision of lws numbered revision.

    Args:
        lws: LeaderWorkerSet to snapshot
        revision: Revision number
        template_hash: Template hash the revision is recorded for

    Returns:
        V1ControllerRevision owned by lws carrying its annotations
    """
    controller_revision = new_controller_revision(
        lws,
        {TEMPLATE_REVISION_HASH_KEY: template_hash},
        get_patch(lws),
        revision,
    )
    annotations = controller_revision.metadata.annotations or {}
    annotations.update(lws.metadata.annotations)
    controller_revision.metadata.annotations = annotations
    return controller_revision


def apply_revision(lws: LeaderWorkerSet, revision: V1ControllerRevision) -> LeaderWorkerSet:
    """
    Restore the spec stored in revision onto a copy of lws.

    Returns:
        New LeaderWorkerSet, lws is left untouched
    """
    patched = strategic_merge(lws.to_dict(), revision.data)
    return LeaderWorkerSet.from_dict(patched)


def next_revision(revisions: list[V1ControllerRevision]) -> int:
    """
    Return the next revision number.

    revisions must be sorted by revision number.
    """
    if not revisions:
        return 1
    return revisions[-1].revision + 1


class RevisionManager:
    """Manages the ControllerRevisions of LeaderWorkerSets."""

    def __init__(self, cluster: ClusterConnection, request_timeout: Optional[float] = None):
        """
        Initialize revision manager.

        Args:
            cluster: Cluster connection
            request_timeout: Timeout applied to each API call (seconds)
        """
        self.cluster = cluster
        self.history = ControllerHistory(cluster, request_timeout=request_timeout)

    def get_revision_from_template_hash(
        self, lws: LeaderWorkerSet, template_hash: str
    ) -> V1ControllerRevision:
        """
        Get the revision recorded for a template hash.

        Raises:
            RevisionNotFoundError: If no revision matches
            RevisionConflictError: If more than one revision matches
        """
        revisions = self.history.list_controller_revisions(
            lws, {TEMPLATE_REVISION_HASH_KEY: template_hash}
        )
        if not revisions:
            raise RevisionNotFoundError(
                f"could not find LWS revision based on {template_hash}"
            )
        # A revision is only created when the template hash changes
        if len(revisions) > 1:
            raise RevisionConflictError(
                f"found more than one revision matching templateHash {template_hash}"
            )
        return revisions[0]

    def existing_controller_revisions(self, lws: LeaderWorkerSet) -> bool:
        """Return True if lws has recorded any revision."""
        return len(self.history.list_controller_revisions(lws)) > 0

    def create_revision(self, lws: LeaderWorkerSet, template_hash: str) -> None:
        """
        Record the current spec of lws.

        If an equal revision is already the latest one nothing happens. If an
        equal revision exists further back in history its revision number is
        advanced instead of creating a duplicate. Otherwise a new revision is
        created.
        """
        revisions = self.history.list_controller_revisions(lws)
        sort_controller_revisions(revisions)

        current = new_revision(lws, next_revision(revisions), template_hash)

        equal_revisions = find_equal_revisions(revisions, current)
        logger.debug(f"Found {len(equal_revisions)} equal revisions for {lws.namespace}/{lws.name}")
        if equal_revisions and equal_revision(revisions[-1], equal_revisions[-1]):
            return

        if equal_revisions:
            # Roll back by moving the equivalent revision to the front
            self.history.update_controller_revision(equal_revisions[-1], current.revision)
            return

        created = self.history.create_controller_revision(lws, current)
        logger.info(
            f"Created revision {created.metadata.name} ({current.revision}) "
            f"for {lws.namespace}/{lws.name}"
        )

    def truncate_history(self, lws: LeaderWorkerSet, template_hash: str) -> None:
        """
        Delete every revision of lws except the one recorded for template_hash.

        Raises:
            RevisionNotFoundError: If no revision matches template_hash
            RevisionConflictError: If more than one revision matches template_hash
        """
        revisions = self.history.list_controller_revisions(lws)
        current = self.get_revision_from_template_hash(lws, template_hash)
        for revision in revisions:
            if revision.metadata.name != current.metadata.name:
                self.history.delete_controller_revision(revision)
