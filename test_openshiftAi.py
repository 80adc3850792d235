import openshiftAi
from conftest import FakeK8sClient
from k8sClient import CSV, DATA_SCIENCE_CLUSTER, OPERATOR_GROUP, ROUTE, SUBSCRIPTION, Resource
from osaConfig import OpenShiftAiConfig

CFG = OpenShiftAiConfig()


def test_datasciencecluster_components(k8s: FakeK8sClient) -> None:
    k8s.on_create(DATA_SCIENCE_CLUSTER, lambda dsc: dsc.update({"status": {"phase": "Ready"}}))
    assert openshiftAi.install_datasciencecluster(k8s, CFG)

    dsc = k8s.get(DATA_SCIENCE_CLUSTER, CFG.datasciencecluster_name)
    assert dsc is not None
    components = dsc["spec"]["components"]
    assert components["dashboard"] == {"managementState": "Managed"}
    assert components["workbenches"] == {"managementState": "Managed", "workbenchNamespace": CFG.workbench_namespace}
    assert components["kserve"] == {"managementState": "Removed"}
    assert "namespace" not in dsc["metadata"]


def test_datasciencecluster_not_ready_warns(k8s: FakeK8sClient) -> None:
    assert not openshiftAi.install_datasciencecluster(k8s, CFG)


def test_dashboard_url(k8s: FakeK8sClient) -> None:
    assert openshiftAi.dashboard_url(k8s) is None
    k8s.add(ROUTE, {
        "metadata": {"name": "odh", "namespace": openshiftAi.APPLICATIONS_NAMESPACE, "labels": {"app": "odh-dashboard"}},
        "spec": {"host": "odh.apps.example.com"},
    })
    assert openshiftAi.dashboard_url(k8s) == "https://odh.apps.example.com"
    k8s.add(ROUTE, {"metadata": {"name": "rhods-dashboard", "namespace": openshiftAi.APPLICATIONS_NAMESPACE}, "spec": {"host": "rhods.apps.example.com"}})
    assert openshiftAi.dashboard_url(k8s) == "https://rhods.apps.example.com"


def test_setup_openshift_ai(k8s: FakeK8sClient) -> None:
    def installed(sub: Resource) -> None:
        sub["status"] = {"installedCSV": "rhods-operator.2.16.0"}
        k8s.add(CSV, {"metadata": {"name": "rhods-operator.2.16.0", "namespace": CFG.namespace}, "status": {"phase": "Succeeded"}})

    k8s.on_create(SUBSCRIPTION, installed)
    k8s.on_create(DATA_SCIENCE_CLUSTER, lambda dsc: dsc.update({"status": {"phase": "Ready"}}))
    openshiftAi.setup_openshift_ai(k8s, CFG)

    og = k8s.get(OPERATOR_GROUP, CFG.operator_group, CFG.namespace)
    assert og is not None
    assert og["spec"] == {}
    assert k8s.get(DATA_SCIENCE_CLUSTER, CFG.datasciencecluster_name) is not None


def test_setup_openshift_ai_skips(k8s: FakeK8sClient) -> None:
    assert openshiftAi.setup_openshift_ai(k8s, CFG, skip_operator=True, skip_cluster=True) is None
    assert k8s.objects == {}
