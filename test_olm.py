import pytest
from conftest import FakeK8sClient
from k8sClient import CSV, OPERATOR_GROUP, PACKAGE_MANIFEST, SUBSCRIPTION, Resource
from olm import OperatorInstaller, OperatorSpec, choose_channel
from poller import WaitTimeoutError


def test_choose_channel() -> None:
    assert choose_channel(["stable", "latest"], "latest", "stable") == "stable"
    assert choose_channel(["release-1.7", "release-1.6"], "release-1.7", "stable", ("release-1.8", "release-1.6")) == "release-1.6"
    assert choose_channel(["fast"], "fast", "stable", ("release-1.8",)) == "fast"
    assert choose_channel(["b", "a"], None, "stable") == "b"
    assert choose_channel([], None, "stable") == "stable"


def _succeed_on_subscribe(k8s: FakeK8sClient, csv_name: str) -> None:
    def hook(sub: Resource) -> None:
        ns = sub["metadata"]["namespace"]
        sub["status"] = {"installedCSV": csv_name}
        k8s.add(CSV, {"metadata": {"name": csv_name, "namespace": ns}, "status": {"phase": "Succeeded"}})

    k8s.on_create(SUBSCRIPTION, hook)


def test_install(k8s: FakeK8sClient) -> None:
    k8s.add(PACKAGE_MANIFEST, {
        "metadata": {"name": "compliance-operator", "namespace": "openshift-marketplace"},
        "status": {"defaultChannel": "stable", "channels": [{"name": "release-1.6"}, {"name": "stable"}]},
    })
    _succeed_on_subscribe(k8s, "compliance-operator.v1.6.0")
    spec = OperatorSpec(
        package="compliance-operator",
        namespace="openshift-compliance",
        channel="release-1.8",
        operator_group="compliance-operator",
        target_namespaces=("openshift-compliance",),
        preferred_channels=("release-1.7", "release-1.6"),
    )

    assert OperatorInstaller(k8s).install(spec) == "compliance-operator.v1.6.0"
    assert "openshift-compliance" in k8s.namespaces
    og = k8s.get(OPERATOR_GROUP, "compliance-operator", "openshift-compliance")
    assert og is not None
    assert og["spec"]["targetNamespaces"] == ["openshift-compliance"]
    sub = k8s.get(SUBSCRIPTION, "compliance-operator", "openshift-compliance")
    assert sub is not None
    assert sub["spec"]["channel"] == "release-1.6"
    assert sub["spec"]["sourceNamespace"] == "openshift-marketplace"


def test_install_is_idempotent(k8s: FakeK8sClient) -> None:
    spec = OperatorSpec(package="rhacs-operator", namespace="rhacs-operator", operator_group="rhacs-operator-group")
    k8s.add(SUBSCRIPTION, {"metadata": {"name": "rhacs-operator", "namespace": "rhacs-operator"}, "status": {"installedCSV": "rhacs-operator.v4.9.0"}})
    k8s.add(CSV, {"metadata": {"name": "rhacs-operator.v4.9.0", "namespace": "rhacs-operator"}, "status": {"phase": "Succeeded"}})

    assert OperatorInstaller(k8s).install(spec) == "rhacs-operator.v4.9.0"
    assert k8s.get(OPERATOR_GROUP, "rhacs-operator-group", "rhacs-operator") is None


def test_global_namespace_skips_operator_group(k8s: FakeK8sClient) -> None:
    _succeed_on_subscribe(k8s, "rhtas-operator.v1.1.0")
    spec = OperatorSpec(package="rhtas-operator", namespace="openshift-operators", subscription_name="trusted-artifact-signer")
    OperatorInstaller(k8s).install(spec)
    assert k8s.list_resources(OPERATOR_GROUP, "openshift-operators") == []
    assert k8s.get(SUBSCRIPTION, "trusted-artifact-signer", "openshift-operators") is not None


def test_all_namespaces_operator_group(k8s: FakeK8sClient) -> None:
    spec = OperatorSpec(package="rhods-operator", namespace="redhat-ods-operator")
    OperatorInstaller(k8s).ensure_operator_group(spec)
    og = k8s.get(OPERATOR_GROUP, "rhods-operator-group", "redhat-ods-operator")
    assert og is not None
    assert og["spec"] == {}


def test_existing_subscription_switches_channel(k8s: FakeK8sClient) -> None:
    spec = OperatorSpec(package="rhacs-operator", namespace="rhacs-operator")
    k8s.add(SUBSCRIPTION, {"metadata": {"name": "rhacs-operator", "namespace": "rhacs-operator"}, "spec": {"channel": "latest"}})
    sub = OperatorInstaller(k8s).ensure_subscription(spec, "stable")
    assert sub["spec"]["channel"] == "stable"
    assert k8s.patches == [("subscriptions", "rhacs-operator", {"spec": {"channel": "stable"}})]


def test_find_csv_by_display_name(k8s: FakeK8sClient) -> None:
    spec = OperatorSpec(package="rhtas-operator", namespace="openshift-operators", csv_display_name="Red Hat Trusted Artifact Signer")
    k8s.add(CSV, {"metadata": {"name": "other.v1", "namespace": "openshift-operators"}, "spec": {"displayName": "Other"}})
    k8s.add(CSV, {"metadata": {"name": "tas.v1.2", "namespace": "openshift-operators"}, "spec": {"displayName": "Red Hat Trusted Artifact Signer"}})
    assert OperatorInstaller(k8s).find_csv(spec) == "tas.v1.2"


def test_install_times_out_when_csv_fails(k8s: FakeK8sClient) -> None:
    def hook(sub: Resource) -> None:
        sub["status"] = {"installedCSV": "broken.v1"}
        k8s.add(CSV, {"metadata": {"name": "broken.v1", "namespace": "broken"}, "status": {"phase": "Failed"}})

    k8s.on_create(SUBSCRIPTION, hook)
    with pytest.raises(WaitTimeoutError):
        OperatorInstaller(k8s).install(OperatorSpec(package="broken", namespace="broken"))
