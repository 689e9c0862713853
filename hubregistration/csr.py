"""Automatic approval of renewal certificate requests from accepted managed clusters."""

from __future__ import annotations

import base64
import binascii
import logging
import re

from cryptography import x509
from cryptography.x509.oid import NameOID

from .controller import Controller, EventRecorder, SyncContext
from .objects import (
    CERTIFICATE_APPROVED,
    CERTIFICATE_DENIED,
    KUBE_APISERVER_CLIENT_SIGNER_NAME,
    MANAGED_CLUSTERS_GROUP,
    SUBJECT_PREFIX,
    CertificateSigningRequest,
    ConditionStatus,
    CSRCondition,
    NotFoundError,
    SubjectAccessReview,
)
from .store import ResourceStore

log = logging.getLogger(__name__)

SPOKE_CLUSTER_NAME_LABEL = "open-cluster-management.io/cluster-name"

_PEM_BLOCK = re.compile(
    rb"-----BEGIN ([^\r\n-]*)-----\r?\n(.*?)-----END \1-----", re.DOTALL
)


def _decode_pem(data: bytes) -> tuple[str, bytes] | None:
    match = _PEM_BLOCK.search(data)
    if match is None:
        return None
    try:
        der = base64.b64decode(b"".join(match.group(2).split()), validate=True)
    except (binascii.Error, ValueError):
        return None
    return match.group(1).decode("ascii", "replace"), der


def _in_terminal_state(csr: CertificateSigningRequest) -> bool:
    return any(c.type in (CERTIFICATE_APPROVED, CERTIFICATE_DENIED) for c in csr.conditions)


def is_spoke_cluster_client_cert_renewal(csr: CertificateSigningRequest) -> bool:
    """Whether a request is a client certificate renewal from a spoke cluster agent.

    The cluster label and signer must be set, the request's organizations must
    name exactly the cluster's group, and the common name must carry that group
    as a prefix and equal the requesting user.
    """
    spoke_cluster_name = csr.metadata.labels.get(SPOKE_CLUSTER_NAME_LABEL)
    if spoke_cluster_name is None:
        return False
    if csr.signer_name != KUBE_APISERVER_CLIENT_SIGNER_NAME:
        return False

    block = _decode_pem(csr.request)
    if block is None or block[0] != "CERTIFICATE REQUEST":
        log.debug('csr "%s" was not recognized: PEM block type is not CERTIFICATE REQUEST', csr.name)
        return False

    try:
        request = x509.load_der_x509_csr(block[1])
    except ValueError as err:
        log.debug('csr "%s" was not recognized: %s', csr.name, err)
        return False

    subject = request.subject
    orgs = {attr.value for attr in subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)}
    orgs.discard(MANAGED_CLUSTERS_GROUP)
    expected_org = f"{SUBJECT_PREFIX}{spoke_cluster_name}"
    if orgs != {expected_org}:
        return False

    common_names = subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    common_name = common_names[-1].value if common_names else ""
    if not common_name.startswith(expected_org):
        return False
    return csr.username == common_name


class CSRApprovingController:
    """Approves renewal requests of spoke agents that a subject access review allows."""

    def __init__(self, store: ResourceStore, recorder: EventRecorder | None = None) -> None:
        self.store = store
        self.recorder = recorder or EventRecorder("csr-approving-controller")

    def sync(self, sync_ctx: SyncContext) -> None:
        csr_name = sync_ctx.queue_key
        log.debug('Reconciling CertificateSigningRequests "%s"', csr_name)
        try:
            csr = self.store.get(CertificateSigningRequest, csr_name)
        except NotFoundError:
            return

        if _in_terminal_state(csr):
            return
        if not is_spoke_cluster_client_cert_renewal(csr):
            log.debug('CSR "%s" was not recognized', csr.name)
            return
        if not self.authorize(csr):
            log.debug(
                'Managed cluster csr "%s" cannot be auto approved due to subject access review was not approved',
                csr.name,
            )
            return

        csr.conditions.append(
            CSRCondition(
                type=CERTIFICATE_APPROVED,
                status=ConditionStatus.TRUE,
                reason="AutoApprovedByHubCSRApprovingController",
                message="Auto approving Managed cluster agent certificate after SubjectAccessReview.",
            )
        )
        self.store.update(csr)
        self.recorder.event(
            "ManagedClusterCSRAutoApproved",
            f'spoke cluster csr "{csr.name}" is auto approved by hub csr controller',
        )

    def authorize(self, csr: CertificateSigningRequest) -> bool:
        """Ask whether the requesting agent may renew its client certificate."""
        review = SubjectAccessReview(
            user=csr.username,
            uid=csr.uid,
            groups=list(csr.groups),
            extra={key: list(values) for key, values in csr.extra.items()},
            resource_attributes={
                "group": "register.open-cluster-management.io",
                "resource": "managedclusters",
                "verb": "renew",
                "subresource": "clientcertificates",
            },
        )
        return self.store.create(review).allowed

    def controller(self) -> Controller:
        return Controller(
            "CSRApprovingController",
            self.sync,
            recorder=self.recorder,
            queue_key_funcs=[lambda obj: obj.metadata.name],
        )