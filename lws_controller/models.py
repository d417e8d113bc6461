"""LeaderWorkerSet resource models and well-known keys."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# API coordinates of the LeaderWorkerSet custom resource
GROUP = "leaderworkerset.x-k8s.io"
VERSION = "v1"
KIND = "LeaderWorkerSet"
PLURAL = "leaderworkersets"
API_VERSION = f"{GROUP}/{VERSION}"

# Labels
SET_NAME_LABEL_KEY = "leaderworkerset.sigs.k8s.io/name"
GROUP_INDEX_LABEL_KEY = "leaderworkerset.sigs.k8s.io/group-index"
WORKER_INDEX_LABEL_KEY = "leaderworkerset.sigs.k8s.io/worker-index"
GROUP_UNIQUE_HASH_LABEL_KEY = "leaderworkerset.sigs.k8s.io/group-key"
TEMPLATE_REVISION_HASH_KEY = "leaderworkerset.sigs.k8s.io/template-revision-hash"

# Annotations
SIZE_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/size"
LEADER_POD_NAME_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/leader-name"
EXCLUSIVE_KEY_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/exclusive-topology"
SUBGROUP_SIZE_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/subgroup-size"
SUBGROUP_EXCLUSIVE_KEY_ANNOTATION_KEY = (
    "leaderworkerset.sigs.k8s.io/subgroup-exclusive-topology"
)
LEADER_REQUESTS_TPUS_ANNOTATION_KEY = "leaderworkerset.sigs.k8s.io/leader-requests-tpus"


class RestartPolicy(str, Enum):
    """Group restart policy."""

    RECREATE_GROUP_ON_POD_RESTART = "RecreateGroupOnPodRestart"
    DEFAULT = "Default"
    NONE = "None"


class StartupPolicy(str, Enum):
    """Group startup policy."""

    LEADER_CREATED = "LeaderCreated"
    # Workers are created only after the leader statefulset is ready
    LEADER_READY = "LeaderReady"


class _CamelModel(BaseModel):
    """Base model serialized with the API server's camelCase field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class ObjectMeta(_CamelModel):
    """Subset of object metadata used by the controller."""

    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class SubGroupPolicy(_CamelModel):
    """Splits a group into equally sized sub-groups."""

    sub_group_size: int


class LeaderWorkerTemplate(_CamelModel):
    """Pod templates and sizing of a single group."""

    leader_template: Optional[dict[str, Any]] = None
    worker_template: dict[str, Any] = Field(default_factory=dict)
    size: int = 1
    restart_policy: RestartPolicy = RestartPolicy.DEFAULT
    sub_group_policy: Optional[SubGroupPolicy] = None


class LeaderWorkerSetSpec(_CamelModel):
    """Desired state of a LeaderWorkerSet."""

    replicas: int = 1
    leader_worker_template: LeaderWorkerTemplate
    startup_policy: StartupPolicy = StartupPolicy.LEADER_CREATED


class LeaderWorkerSet(_CamelModel):
    """LeaderWorkerSet custom resource."""

    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: LeaderWorkerSetSpec

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "LeaderWorkerSet":
        """Build a LeaderWorkerSet from an API server response."""
        return cls.model_validate(obj)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the generic mapping accepted by the API server."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def size(self) -> int:
        return self.spec.leader_worker_template.size


class ReconcileRequest(BaseModel):
    """Identity of the object to reconcile."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str = "default"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


class ReconcileResult(BaseModel):
    """Outcome of a single reconciliation."""

    requeue: bool = False
    requeue_after: Optional[float] = None
