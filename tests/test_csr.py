import base64

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from hubregistration.controller import EventRecorder, SyncContext
from hubregistration.csr import CSRApprovingController, is_spoke_cluster_client_cert_renewal
from hubregistration.objects import (
    CERTIFICATE_APPROVED,
    CERTIFICATE_DENIED,
    KUBE_APISERVER_CLIENT_SIGNER_NAME,
    MANAGED_CLUSTERS_GROUP,
    SUBJECT_PREFIX,
    CertificateSigningRequest,
    ConditionStatus,
    CSRCondition,
    ObjectMeta,
    SubjectAccessReview,
)
from hubregistration.store import ResourceStore

PRIVATE_KEY = ec.generate_private_key(ec.SECP256R1())

VALID = dict(
    name="testcsr",
    labels={"open-cluster-management.io/cluster-name": "managedcluster1"},
    signer_name=KUBE_APISERVER_CLIENT_SIGNER_NAME,
    cn=SUBJECT_PREFIX + "managedcluster1:spokeagent1",
    orgs=[SUBJECT_PREFIX + "managedcluster1", MANAGED_CLUSTERS_GROUP],
    username=SUBJECT_PREFIX + "managedcluster1:spokeagent1",
    block_type="CERTIFICATE REQUEST",
)


def new_csr(name="", labels=None, signer_name="", cn="", orgs=(), username="", block_type="", conditions=()):
    attrs = [x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in orgs]
    if cn:
        attrs.append(x509.NameAttribute(NameOID.COMMON_NAME, cn))
    request = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name(attrs))
        .sign(PRIVATE_KEY, hashes.SHA256())
    )
    body = base64.encodebytes(request.public_bytes(serialization.Encoding.DER)).decode()
    pem = f"-----BEGIN {block_type}-----\n{body}-----END {block_type}-----\n".encode()
    return CertificateSigningRequest(
        metadata=ObjectMeta(name=name, labels=dict(labels or {})),
        signer_name=signer_name,
        request=pem,
        username=username,
        groups=["system:authenticated"],
        conditions=list(conditions),
    )


def with_condition(condition_type):
    return new_csr(**VALID, conditions=[CSRCondition(type=condition_type, status=ConditionStatus.TRUE)])


def run_sync(csrs, allowed):
    store = ResourceStore(*csrs)
    store.prepend_reactor("create", SubjectAccessReview, lambda action: SubjectAccessReview(allowed=allowed))
    recorder = EventRecorder("test")
    CSRApprovingController(store, recorder).sync(SyncContext(VALID["name"]))
    return store, recorder


def verbs(store):
    return [a.verb for a in store.actions]


EXPECTED_APPROVAL = CSRCondition(
    type=CERTIFICATE_APPROVED,
    status=ConditionStatus.TRUE,
    reason="AutoApprovedByHubCSRApprovingController",
    message="Auto approving Managed cluster agent certificate after SubjectAccessReview.",
)


@pytest.mark.parametrize(
    "csrs",
    [
        [],
        [with_condition(CERTIFICATE_DENIED)],
        [with_condition(CERTIFICATE_APPROVED)],
        [new_csr(**{**VALID, "cn": "system:open-cluster-management:managedcluster1:invalidagent"})],
    ],
    ids=["deleted", "denied", "approved", "invalid"],
)
def test_sync_without_actions(csrs):
    store, _ = run_sync(csrs, allowed=False)
    assert verbs(store) == []


def test_sync_denied_by_subject_access_review():
    store, recorder = run_sync([new_csr(**VALID)], allowed=False)
    assert verbs(store) == ["create"]
    review = store.actions[0].obj
    assert review.user == VALID["username"]
    assert review.groups == ["system:authenticated"]
    assert review.resource_attributes == {
        "group": "register.open-cluster-management.io",
        "resource": "managedclusters",
        "verb": "renew",
        "subresource": "clientcertificates",
    }
    assert recorder.events == []


def test_sync_allowed_is_approved():
    store, recorder = run_sync([new_csr(**VALID)], allowed=True)
    assert verbs(store) == ["create", "update"]
    assert store.actions[1].obj.conditions == [EXPECTED_APPROVAL]
    assert recorder.events[0][0] == "ManagedClusterCSRAutoApproved"


def test_sync_allowed_without_managed_clusters_group():
    orgs = sorted(set(VALID["orgs"]) - {MANAGED_CLUSTERS_GROUP})
    store, _ = run_sync([new_csr(**{**VALID, "orgs": orgs})], allowed=True)
    assert verbs(store) == ["create", "update"]
    assert store.actions[1].obj.conditions == [EXPECTED_APPROVAL]


@pytest.mark.parametrize(
    "fields,expected",
    [
        ({}, False),
        ({"labels": VALID["labels"], "signer_name": "invalidsigner"}, False),
        ({"labels": VALID["labels"], "signer_name": VALID["signer_name"], "block_type": "RSA PRIVATE KEY"}, False),
        ({"labels": VALID["labels"], "signer_name": VALID["signer_name"], "block_type": VALID["block_type"]}, False),
        (
            {"labels": VALID["labels"], "signer_name": VALID["signer_name"], "orgs": ["test"],
             "block_type": VALID["block_type"]},
            False,
        ),
        (
            {"labels": VALID["labels"], "signer_name": VALID["signer_name"], "orgs": VALID["orgs"],
             "block_type": VALID["block_type"]},
            False,
        ),
        ({**VALID, "cn": "system:open-cluster-management:managedcluster1:invalidagent"}, False),
        ({**VALID, "signer_name": ""}, False),
        (VALID, True),
    ],
    ids=[
        "no labels",
        "invalid signer",
        "wrong block type",
        "empty organization",
        "invalid organization",
        "invalid common name",
        "common name differs from user",
        "no signer name",
        "renewal",
    ],
)
def test_is_spoke_cluster_client_cert_renewal(fields, expected):
    assert is_spoke_cluster_client_cert_renewal(new_csr(**fields)) is expected


def test_garbled_pem_is_not_renewal():
    csr = new_csr(**VALID)
    csr.request = b"-----BEGIN CERTIFICATE REQUEST-----\n!!!\n-----END CERTIFICATE REQUEST-----\n"
    assert is_spoke_cluster_client_cert_renewal(csr) is False


def test_controller_queues_csr_by_name_and_approves():
    store = ResourceStore(new_csr(**VALID))
    store.prepend_reactor("create", SubjectAccessReview, lambda action: SubjectAccessReview(allowed=True))
    ctrl = CSRApprovingController(store).controller()
    ctrl.enqueue(store.get(CertificateSigningRequest, VALID["name"]))
    assert ctrl.process_next(timeout=0) is True
    approved = store.get(CertificateSigningRequest, VALID["name"])
    assert approved.conditions == [EXPECTED_APPROVAL]