import pytest
import certManager
from common import PrerequisiteError, SetupError
from conftest import FakeK8sClient
from k8sClient import ACME_ORDER, CERTIFICATE, CLUSTER_ISSUER, DNS_CONFIG, ROUTE, Resource
from osaConfig import AcsConfig


def test_domain_from_console_host() -> None:
    assert certManager.domain_from_console_host("console-openshift-console.apps.cluster.example.com") == "cluster.example.com"
    assert certManager.domain_from_console_host("console.example.com") is None


def test_cluster_domain_from_console(k8s: FakeK8sClient) -> None:
    k8s.add(ROUTE, {"metadata": {"name": "console", "namespace": "openshift-console"}, "spec": {"host": "console-openshift-console.apps.lab.example.com"}})
    assert certManager.cluster_domain(k8s) == "lab.example.com"


def test_cluster_domain_from_dns_config(k8s: FakeK8sClient) -> None:
    k8s.add(DNS_CONFIG, {"metadata": {"name": "cluster"}, "spec": {"baseDomain": "lab.example.com"}})
    assert certManager.cluster_domain(k8s) == "lab.example.com"


def test_cluster_domain_unknown(k8s: FakeK8sClient) -> None:
    with pytest.raises(SetupError):
        certManager.cluster_domain(k8s)


def test_certificate_status(k8s: FakeK8sClient) -> None:
    assert certManager.certificate_status(k8s, "central-tls", "acs") == "not created"

    k8s.add(CERTIFICATE, {"metadata": {"name": "central-tls", "namespace": "acs"}})
    k8s.add(ACME_ORDER, {
        "metadata": {"name": "order-1", "namespace": "acs", "labels": {"acme.cert-manager.io/certificate-name": "central-tls"}},
        "status": {"state": "pending"},
    })
    assert certManager.certificate_status(k8s, "central-tls", "acs") == "ACME Order: pending"

    k8s.patch(CERTIFICATE, "central-tls", {"status": {"conditions": [{"type": "Ready", "status": "False", "reason": "Issuing"}]}}, "acs")
    assert certManager.certificate_status(k8s, "central-tls", "acs") == "Status: Issuing"

    k8s.patch(CERTIFICATE, "central-tls", {"status": {"conditions": [{"type": "Ready", "status": "True"}]}}, "acs")
    assert certManager.certificate_status(k8s, "central-tls", "acs") == "Ready"


def test_setup_central_tls_requires_cert_manager(k8s: FakeK8sClient) -> None:
    with pytest.raises(PrerequisiteError):
        certManager.setup_central_tls(k8s, AcsConfig())

    k8s.crds.add(certManager.CERTIFICATE_CRD)
    with pytest.raises(PrerequisiteError):
        certManager.setup_central_tls(k8s, AcsConfig())


def test_setup_central_tls(k8s: FakeK8sClient) -> None:
    cfg = AcsConfig()
    k8s.crds.add(certManager.CERTIFICATE_CRD)
    k8s.add(CLUSTER_ISSUER, {"metadata": {"name": cfg.tls_issuer}})
    k8s.add(DNS_CONFIG, {"metadata": {"name": "cluster"}, "spec": {"baseDomain": "lab.example.com"}})

    def issue(cert: Resource) -> None:
        cert["status"] = {"conditions": [{"type": "Ready", "status": "True"}]}
        k8s.secrets[(cfg.namespace, cert["spec"]["secretName"])] = {"tls.crt": "CERT", "tls.key": "KEY"}

    k8s.on_create(CERTIFICATE, issue)

    assert certManager.setup_central_tls(k8s, cfg) == "central.apps.lab.example.com"
    cert = k8s.get(CERTIFICATE, cfg.tls_certificate_name, cfg.namespace)
    assert cert is not None
    assert cert["spec"]["dnsNames"] == ["central.apps.lab.example.com"]
    assert cert["spec"]["issuerRef"] == {"name": cfg.tls_issuer, "kind": "ClusterIssuer"}
    assert k8s.secrets[(cfg.namespace, cfg.central_tls_secret)] == {"tls.crt": "CERT", "tls.key": "KEY"}
