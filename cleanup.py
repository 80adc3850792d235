from typing import Callable
from kubernetes.client.exceptions import ApiException
import common
from k8sClient import K8sClient, CSV, OPERATOR_GROUP, SECURED_CLUSTER, SUBSCRIPTION, lookup
from logger import logger
from osaConfig import AcsConfig, RhtasConfig
from poller import FailurePolicy, wait_for

log = logger.tagged("CLEANUP")

ACS_SECRETS = ("collector-tls", "sensor-tls", "admission-control-tls")
COPIED_CSV_LABEL = "olm.copiedFrom"


def _attempt(what: str, fn: Callable[[], object]) -> bool:
    """Cleanup continues past failures; each one is reported."""
    try:
        fn()
    except (ApiException, common.SetupError) as e:
        log.warning(f"Failed to {what}: {e}")
        return False
    return True


def cleanup_acs(client: K8sClient, cfg: AcsConfig) -> bool:
    """Remove the secured cluster side of RHACS from the cluster behind client."""
    ns = cfg.namespace
    if not client.namespace_exists(ns):
        log.info(f"Namespace {ns} does not exist in {client.context}, nothing to clean up")
        return True

    ok = True
    for sc in client.list_resources(SECURED_CLUSTER, ns):
        name = sc["metadata"]["name"]
        ok &= _attempt(f"clear finalizers of SecuredCluster {name}", lambda: client.clear_finalizers(SECURED_CLUSTER, name, ns))
        ok &= _attempt(f"delete SecuredCluster {name}", lambda: client.delete(SECURED_CLUSTER, name, ns))

    log.info(f"Deleting workloads in {ns}")
    ret = client.oc(["delete", "all", "--all", "-n", ns, "--ignore-not-found=true", "--wait=false"])
    if not ret.success():
        log.warning(f"Failed to delete workloads in {ns}: {ret.err.strip()}")
        ok = False

    ok &= _attempt(f"delete Subscription {cfg.operator_package}", lambda: client.delete(SUBSCRIPTION, cfg.operator_package, ns))
    ok &= _attempt(f"delete OperatorGroup {cfg.operator_group}", lambda: client.delete(OPERATOR_GROUP, cfg.operator_group, ns))

    for csv in client.list_resources(CSV, ns):
        name = csv["metadata"]["name"]
        if name.startswith(f"{cfg.operator_package}."):
            ok &= _attempt(f"clear finalizers of CSV {name}", lambda: client.clear_finalizers(CSV, name, ns))
            ok &= _attempt(f"delete CSV {name}", lambda: client.delete(CSV, name, ns))

    for secret in ACS_SECRETS:
        ok &= _attempt(f"delete secret {secret}", lambda: client.delete_secret(secret, ns))

    ok &= _attempt(f"delete namespace {ns}", lambda: client.delete_namespace(ns))
    gone = wait_for(
        f"namespace {ns} to be deleted",
        lambda: not client.namespace_exists(ns),
        timeout=60,
        interval=client.waits.interval,
        policy=FailurePolicy.WARN,
        log=log,
    )
    if not gone:
        log.info(f"Namespace {ns} is stuck terminating, removing its finalizers")
        ok &= _attempt(f"clear finalizers of namespace {ns}", lambda: client.clear_namespace_finalizers(ns))

    if ok:
        log.info(f"RHACS removed from {client.context}")
    return ok


def stray_rhtas_operators(client: K8sClient, cfg: RhtasConfig) -> tuple[list[tuple[str, str]], list[tuple[str, str]]]:
    """Subscriptions and CSVs of the RHTAS operator living outside its namespace."""
    subs = [
        (s["metadata"]["namespace"], s["metadata"]["name"])
        for s in client.list_resources(SUBSCRIPTION)
        if s["metadata"]["name"] == cfg.subscription_name and s["metadata"]["namespace"] != cfg.operator_namespace
    ]
    csvs = [
        (c["metadata"]["namespace"], c["metadata"]["name"])
        for c in client.list_resources(CSV)
        if lookup(c, "spec.displayName") == cfg.csv_display_name
        and c["metadata"]["namespace"] != cfg.operator_namespace
        # OLM copies global operator CSVs into every namespace
        and COPIED_CSV_LABEL not in (lookup(c, "metadata.labels") or {})
    ]
    return subs, csvs


def cleanup_rhtas(client: K8sClient, cfg: RhtasConfig, *, assume_yes: bool = False) -> int:
    subs, csvs = stray_rhtas_operators(client, cfg)
    if not subs and not csvs:
        log.info(f"No RHTAS subscriptions or CSVs outside {cfg.operator_namespace}")
        return 0

    for ns, name in subs:
        log.warning(f"  Subscription {ns}/{name} (incorrect namespace)")
    for ns, name in csvs:
        log.warning(f"  CSV {ns}/{name} (incorrect namespace)")
    if not common.confirm("Delete the subscriptions and CSVs in incorrect namespaces?", assume_yes=assume_yes):
        log.info("Skipping deletion")
        return 0

    deleted = 0
    for ns, name in subs:
        deleted += _attempt(f"delete subscription {name} in {ns}", lambda: client.delete(SUBSCRIPTION, name, ns))
    for ns, name in csvs:
        deleted += _attempt(f"delete CSV {name} in {ns}", lambda: client.delete(CSV, name, ns))
    log.info(f"Removed {deleted} stray RHTAS resource(s)")
    return deleted
