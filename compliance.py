import re
from typing import Any, Optional
from common import SetupError
from k8sClient import K8sClient, PROFILE_BUNDLE, lookup
from logger import logger
from olm import OperatorInstaller, OperatorSpec
from osaConfig import AcsConfig, ComplianceConfig
from poller import FailurePolicy, wait_for
from roxClient import RoxApiError, RoxClient

log = logger.tagged("COMPLIANCE")

SENSOR_SELECTOR = "app.kubernetes.io/component=sensor"


class ProfileBundlePendingError(SetupError):
    pass


def operator_spec(cfg: ComplianceConfig) -> OperatorSpec:
    return OperatorSpec(
        package=cfg.operator_package,
        namespace=cfg.namespace,
        channel=cfg.channel,
        operator_group=cfg.operator_group,
        target_namespaces=(cfg.namespace,),
        preferred_channels=("stable", "release-1.8", "release-1.7", "release-1.6", "release-1.5"),
    )


def profile_bundles_valid(client: K8sClient, namespace: str) -> Optional[bool]:
    bundles = client.list_resources(PROFILE_BUNDLE, namespace)
    if not bundles:
        return None
    return all(lookup(b, "status.dataStreamStatus") == "VALID" for b in bundles)


def restart_sensor(client: K8sClient, acs: AcsConfig) -> None:
    """Sensor only notices the compliance operator after a restart."""
    if not client.deployment_exists("sensor", acs.namespace):
        log.info(f"No sensor deployment in {acs.namespace}, skipping restart")
        return
    log.info("Restarting RHACS sensor to pick up the compliance operator")
    client.delete_pods(acs.namespace, SENSOR_SELECTOR)
    wait_for(
        "sensor deployment to become Available",
        lambda: client.deployment_available("sensor", acs.namespace),
        timeout=120,
        interval=client.waits.interval,
        policy=FailurePolicy.WARN,
        log=log,
    )


def install_compliance_operator(client: K8sClient, cfg: ComplianceConfig, acs: AcsConfig) -> str:
    csv = OperatorInstaller(client).install(operator_spec(cfg))
    wait_for(
        "ProfileBundles to be VALID",
        lambda: profile_bundles_valid(client, cfg.namespace),
        timeout=client.waits.operator_timeout,
        interval=client.waits.interval,
        progress_every=client.waits.progress_every,
        policy=FailurePolicy.WARN,
        log=log,
    )
    restart_sensor(client, acs)
    return csv


def scan_configuration_body(cfg: ComplianceConfig, cluster_ids: list[str]) -> dict[str, Any]:
    return {
        "scanName": cfg.scan_name,
        "scanConfig": {
            "oneTimeScan": False,
            "profiles": list(cfg.profiles),
            "scanSchedule": {
                "intervalType": "DAILY",
                "hour": cfg.hour,
                "minute": cfg.minute,
            },
            "description": cfg.description,
        },
        "clusters": cluster_ids,
    }


def _is_profile_bundle_pending(body: str) -> bool:
    return re.search(r"ProfileBundle.*still being processed", body, re.IGNORECASE) is not None


def find_scan_configuration(rox: RoxClient, scan_name: str) -> Optional[str]:
    for conf in rox.list_scan_configurations():
        if conf.get("scanName") == scan_name:
            return str(conf["id"])
    return None


def setup_scan_schedule(rox: RoxClient, cfg: ComplianceConfig) -> str:
    """Replace the scan configuration named cfg.scan_name with one covering every secured cluster."""
    clusters = rox.list_clusters()
    cluster_ids = [str(c["id"]) for c in clusters if c.get("id")]
    if not cluster_ids:
        raise SetupError("Failed to find any secured clusters in RHACS")
    for c in clusters:
        log.info(f"  - {c.get('name')} ({c.get('id')})")

    existing = find_scan_configuration(rox, cfg.scan_name)
    if existing is not None:
        log.info(f"Deleting existing scan configuration '{cfg.scan_name}' (ID: {existing})")
        try:
            rox.delete_scan_configuration(existing)
        except RoxApiError as e:
            log.warning(f"Failed to delete existing scan configuration, creating anyway: {e}")

    log.info(f"Creating compliance scan configuration '{cfg.scan_name}' for {len(cluster_ids)} cluster(s)")
    try:
        created = rox.create_scan_configuration(scan_configuration_body(cfg, cluster_ids))
    except RoxApiError as e:
        if _is_profile_bundle_pending(e.body):
            raise ProfileBundlePendingError(
                f"Cannot create scan: ProfileBundles are still being processed. Check with: oc get profilebundle -n {cfg.namespace}"
            ) from e
        raise

    scan_id = find_scan_configuration(rox, cfg.scan_name)
    if scan_id is None:
        raise SetupError(f"Scan configuration '{cfg.scan_name}' not found after creation")
    log.info(f"Scan configuration '{cfg.scan_name}' verified (ID: {scan_id})")
    log.info(f"Schedule: daily at {cfg.hour:02d}:{cfg.minute:02d}, profiles: {', '.join(cfg.profiles)}")
    return str(created.get("id") or scan_id)
