from typing import Optional
import templates
from k8sClient import K8sClient, DATA_SCIENCE_CLUSTER, ROUTE, lookup
from logger import logger
from olm import OperatorInstaller, OperatorSpec
from osaConfig import OpenShiftAiConfig
from poller import FailurePolicy, wait_for

log = logger.tagged("OPENSHIFT-AI")

APPLICATIONS_NAMESPACE = "redhat-ods-applications"


def operator_spec(cfg: OpenShiftAiConfig) -> OperatorSpec:
    return OperatorSpec(
        package=cfg.operator_package,
        namespace=cfg.namespace,
        channel=cfg.channel,
        operator_group=cfg.operator_group,
        preferred_channels=tuple(cfg.preferred_channels),
    )


def dashboard_url(client: K8sClient) -> Optional[str]:
    host_name = client.route_host("rhods-dashboard", APPLICATIONS_NAMESPACE)
    if not host_name:
        routes = client.list_resources(ROUTE, APPLICATIONS_NAMESPACE, label_selector="app=odh-dashboard")
        host_name = lookup(routes[0], "spec.host") if routes else None
    return f"https://{host_name}" if host_name else None


def install_datasciencecluster(client: K8sClient, cfg: OpenShiftAiConfig) -> bool:
    body = templates.render_resource(
        "datasciencecluster.yaml.j2",
        name=cfg.datasciencecluster_name,
        workbench_namespace=cfg.workbench_namespace,
        managed_components=cfg.managed_components,
        removed_components=cfg.removed_components,
    )
    client.apply(DATA_SCIENCE_CLUSTER, body)

    waits = client.waits
    result = wait_for(
        f"DataScienceCluster {cfg.datasciencecluster_name} to be Ready",
        lambda: client.field(DATA_SCIENCE_CLUSTER, cfg.datasciencecluster_name, None, "status.phase"),
        lambda phase: phase == "Ready",
        timeout=waits.datasciencecluster_timeout,
        interval=waits.datasciencecluster_interval,
        progress_every=waits.progress_every,
        policy=FailurePolicy.WARN,
        log=log,
    )
    if not result:
        log.warning(f"Check progress with: oc get datasciencecluster {cfg.datasciencecluster_name} -o yaml")
    return result.success


def setup_openshift_ai(client: K8sClient, cfg: OpenShiftAiConfig, *, skip_operator: bool = False, skip_cluster: bool = False) -> Optional[str]:
    if skip_operator:
        log.warning("Skipping OpenShift AI Operator installation")
    else:
        OperatorInstaller(client).install(operator_spec(cfg))

    if skip_cluster:
        log.warning("Skipping DataScienceCluster deployment")
    else:
        install_datasciencecluster(client, cfg)

    url = dashboard_url(client)
    if url:
        log.info(f"OpenShift AI dashboard: {url}")
    else:
        log.warning("Dashboard URL not yet available, it appears once the DataScienceCluster is ready")
    return url
