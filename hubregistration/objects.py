"""Resource types kept on the hub and helpers for their status conditions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar

SUBJECT_PREFIX = "system:open-cluster-management:"
"""Prefix that marks open-cluster-management users and groups."""

MANAGED_CLUSTERS_GROUP = SUBJECT_PREFIX + "managed-clusters"
"""Common group shared by all spoke clusters."""

MANAGED_CLUSTER_CONDITION_HUB_ACCEPTED = "HubAcceptedManagedCluster"
MANAGED_CLUSTER_CONDITION_AVAILABLE = "ManagedClusterConditionAvailable"
MANAGED_CLUSTER_ADDON_CONDITION_AVAILABLE = "Available"
MANAGED_CLUSTER_SET_CONDITION_EMPTY = "ClusterSetEmpty"

CERTIFICATE_APPROVED = "Approved"
CERTIFICATE_DENIED = "Denied"
CERTIFICATE_FAILED = "Failed"
KUBE_APISERVER_CLIENT_SIGNER_NAME = "kubernetes.io/kube-apiserver-client"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class Condition:
    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: datetime | None = None

    def is_deleting(self) -> bool:
        """Whether a deletion timestamp has been set."""
        return self.deletion_timestamp is not None


@dataclass
class _Resource:
    KIND: ClassVar[str] = "Resource"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


@dataclass
class ManagedCluster(_Resource):
    KIND: ClassVar[str] = "ManagedCluster"

    hub_accepts_client: bool = False
    lease_duration_seconds: int = 0
    conditions: list[Condition] = field(default_factory=list)


@dataclass
class ManagedClusterAddOn(_Resource):
    KIND: ClassVar[str] = "ManagedClusterAddOn"

    conditions: list[Condition] = field(default_factory=list)


@dataclass
class ManagedClusterSet(_Resource):
    KIND: ClassVar[str] = "ManagedClusterSet"

    conditions: list[Condition] = field(default_factory=list)


@dataclass
class Lease(_Resource):
    KIND: ClassVar[str] = "Lease"

    holder_identity: str | None = None
    renew_time: datetime | None = None


@dataclass
class Namespace(_Resource):
    KIND: ClassVar[str] = "Namespace"


@dataclass
class Role(_Resource):
    KIND: ClassVar[str] = "Role"

    rules: list[dict] = field(default_factory=list)


@dataclass
class RoleBinding(_Resource):
    KIND: ClassVar[str] = "RoleBinding"

    role_ref: str = ""
    subjects: list[dict] = field(default_factory=list)


@dataclass
class ManifestWork(_Resource):
    KIND: ClassVar[str] = "ManifestWork"


@dataclass
class CSRCondition:
    type: str
    status: ConditionStatus = ConditionStatus.TRUE
    reason: str = ""
    message: str = ""


@dataclass
class CertificateSigningRequest(_Resource):
    KIND: ClassVar[str] = "CertificateSigningRequest"

    signer_name: str = ""
    request: bytes = b""
    username: str = ""
    uid: str = ""
    groups: list[str] = field(default_factory=list)
    extra: dict[str, list[str]] = field(default_factory=dict)
    conditions: list[CSRCondition] = field(default_factory=list)


@dataclass
class SubjectAccessReview(_Resource):
    KIND: ClassVar[str] = "SubjectAccessReview"

    user: str = ""
    uid: str = ""
    groups: list[str] = field(default_factory=list)
    extra: dict[str, list[str]] = field(default_factory=dict)
    resource_attributes: dict[str, str] = field(default_factory=dict)
    allowed: bool = False


class NotFoundError(LookupError):
    """A requested resource does not exist."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f'{kind.lower()} "{name}" not found')


def find_status_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Return the condition of the given type, or None."""
    return next((c for c in conditions if c.type == condition_type), None)


def set_status_condition(conditions: list[Condition], new_condition: Condition) -> None:
    """Add or update a condition in place, moving its transition time only on a status change."""
    existing = find_status_condition(conditions, new_condition.type)
    if existing is None:
        conditions.append(
            replace(
                new_condition,
                last_transition_time=new_condition.last_transition_time or _now(),
            )
        )
        return
    if existing.status != new_condition.status:
        existing.status = new_condition.status
        existing.last_transition_time = new_condition.last_transition_time or _now()
    existing.reason = new_condition.reason
    existing.message = new_condition.message


def is_status_condition_true(conditions: list[Condition], condition_type: str) -> bool:
    """Whether the condition of the given type is present with status True."""
    condition = find_status_condition(conditions, condition_type)
    return condition is not None and condition.status == ConditionStatus.TRUE