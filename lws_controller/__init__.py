"""LWS Controller - Leader/worker group reconciliation for Kubernetes."""

from .cluster import ClusterConnection
from .config import Settings, get_settings
from .errors import (
    LWSControllerError,
    MissingLabelError,
    PodNameParseError,
    RevisionConflictError,
    RevisionNotFoundError,
    TemplateError,
    TopologyError,
    WatchError,
)
from .models import (
    LeaderWorkerSet,
    LeaderWorkerSetSpec,
    LeaderWorkerTemplate,
    ReconcileRequest,
    ReconcileResult,
    RestartPolicy,
    StartupPolicy,
    SubGroupPolicy,
)
from .pod_controller import PodReconciler
from .revisions import (
    RevisionManager,
    apply_revision,
    get_patch,
    new_revision,
    next_revision,
)
from .statefulsets import StatefulSetManager, construct_worker_statefulset
from .topology import TopologyResolver
from .watch import PodController, ResourceWatcher, WorkQueue

__version__ = "0.1.0"

__all__ = [
    # Cluster management
    "ClusterConnection",
    "Settings",
    "get_settings",
    # Reconciliation
    "PodReconciler",
    "PodController",
    "ResourceWatcher",
    "WorkQueue",
    "StatefulSetManager",
    "TopologyResolver",
    "construct_worker_statefulset",
    # Revision history
    "RevisionManager",
    "apply_revision",
    "get_patch",
    "new_revision",
    "next_revision",
    # Models
    "LeaderWorkerSet",
    "LeaderWorkerSetSpec",
    "LeaderWorkerTemplate",
    "SubGroupPolicy",
    "RestartPolicy",
    "StartupPolicy",
    "ReconcileRequest",
    "ReconcileResult",
    # Errors
    "LWSControllerError",
    "MissingLabelError",
    "PodNameParseError",
    "TemplateError",
    "TopologyError",
    "RevisionNotFoundError",
    "RevisionConflictError",
    "WatchError",
]
