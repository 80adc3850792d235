from typing import Any, Optional
import certManager
import templates
from common import SetupError
from k8sClient import K8sClient, CENTRAL, ROUTE, lookup
from logger import logger
from olm import OperatorInstaller, OperatorSpec
from poller import FailurePolicy, wait_for
from osaConfig import AcsConfig

log = logger.tagged("RHACS-CENTRAL")

CENTRAL_ROUTE = "central"
REENCRYPT_PATH = "spec.central.exposure.route.reencrypt"


def operator_spec(cfg: AcsConfig) -> OperatorSpec:
    return OperatorSpec(
        package=cfg.operator_package,
        namespace=cfg.namespace,
        channel=cfg.channel,
        source=cfg.source,
        operator_group=cfg.operator_group,
    )


def install_operator(client: K8sClient, cfg: AcsConfig) -> str:
    return OperatorInstaller(client).install(operator_spec(cfg))


def find_central(client: K8sClient, namespaces: tuple[str, ...] = ("stackrox",)) -> Optional[tuple[str, str]]:
    """Locate a Central CR, looking in the given namespaces before the whole cluster."""
    for ns in namespaces:
        items = client.list_resources(CENTRAL, ns)
        if items:
            return ns, items[0]["metadata"]["name"]
    items = client.list_resources(CENTRAL)
    if items:
        meta = items[0]["metadata"]
        return meta["namespace"], meta["name"]
    return None


def find_central_route(client: K8sClient, namespace: str) -> Optional[str]:
    names = [r["metadata"]["name"] for r in client.list_resources(ROUTE, namespace)]
    if CENTRAL_ROUTE in names:
        return CENTRAL_ROUTE
    for name in names:
        if "central" in name.lower():
            return str(name)
    return None


def route_url(client: K8sClient, namespace: str, route: str = CENTRAL_ROUTE) -> Optional[str]:
    host_name = client.route_host(route, namespace)
    return f"https://{host_name}" if host_name else None


def ensure_passthrough(client: K8sClient, namespace: str, name: str, route: str = CENTRAL_ROUTE) -> str:
    """Drop any reencrypt route from the Central CR and wait for a passthrough Route."""
    central = client.get(CENTRAL, name, namespace)
    if central is None:
        raise SetupError(f"Central CR {name} not found in namespace {namespace}")

    if lookup(central, REENCRYPT_PATH) is not None:
        log.info("Removing reencrypt configuration from Central CR...")
        client.patch(CENTRAL, name, [{"op": "remove", "path": "/" + REENCRYPT_PATH.replace(".", "/")}], namespace)

    if lookup(central, "spec.central.exposure.route.enabled") is not True:
        log.info("Enabling route in Central CR...")
        client.patch(CENTRAL, name, {"spec": {"central": {"exposure": {"route": {"enabled": True}}}}}, namespace)

    client.wait_for_field(
        ROUTE,
        route,
        namespace,
        "spec.tls.termination",
        lambda termination: termination == "passthrough",
        description=f"Route {route} to use passthrough termination",
        timeout=client.waits.route_timeout,
    )
    url = route_url(client, namespace, route)
    log.info(f"Central URL: {url}")
    return url or ""


def install_central(client: K8sClient, cfg: AcsConfig) -> str:
    """Create the Central CR with a passthrough route and wait until it is deployed."""
    tls_secret = cfg.central_tls_secret if client.secret_exists(cfg.central_tls_secret, cfg.namespace) else None
    if tls_secret:
        log.info(f"Using custom TLS secret {tls_secret} for Central")

    body = templates.render_resource("central.yaml.j2", name=cfg.central_name, namespace=cfg.namespace, tls_secret=tls_secret)
    client.apply(CENTRAL, body)

    client.wait_for_condition(CENTRAL, cfg.central_name, cfg.namespace, "Deployed", timeout=client.waits.central_timeout)
    return ensure_passthrough(client, cfg.namespace, cfg.central_name)


def configure_passthrough(client: K8sClient, cfg: AcsConfig) -> str:
    found = find_central(client, ("stackrox", cfg.namespace))
    if found is None:
        raise SetupError("Central CR not found. Please ensure RHACS Central is installed.")
    namespace, name = found
    log.info(f"Using Central CR {name} in namespace {namespace}")

    route = find_central_route(client, namespace)
    if route is None:
        raise SetupError(f"Central route not found in namespace {namespace}")
    termination = client.field(ROUTE, route, namespace, "spec.tls.termination")
    log.info(f"Current route termination: {termination or 'edge'}")
    return ensure_passthrough(client, namespace, name, route)


def central_installed(client: K8sClient, cfg: AcsConfig) -> bool:
    return client.exists(CENTRAL, cfg.central_name, cfg.namespace)


def route_for_host(client: K8sClient, namespace: str, host_name: str) -> Optional[dict[str, Any]]:
    for route in client.list_resources(ROUTE, namespace):
        if lookup(route, "spec.host") == host_name:
            return route
    return None


def configure_routes(client: K8sClient, cfg: AcsConfig, domain: Optional[str] = None) -> tuple[str, str]:
    """Expose Central through a passthrough route and a reencrypt route.

    Returns the two hosts. Routes the operator has not created before the
    route timeout are reported but do not fail the step.
    """
    found = find_central(client, ("stackrox", cfg.namespace))
    if found is None:
        raise SetupError("Central CR not found. Please ensure RHACS Central is installed.")
    namespace, name = found

    domain = domain or certManager.cluster_domain(client)
    passthrough = f"{cfg.passthrough_host_prefix}.apps.{domain}"
    reencrypt = f"{cfg.reencrypt_host_prefix}.apps.{domain}"
    log.info(f"Configuring Central CR {name} with passthrough route {passthrough} and reencrypt route {reencrypt}")

    client.patch(CENTRAL, name, {"spec": {"central": {"exposure": {"route": {
        "enabled": True,
        "host": passthrough,
        "reencrypt": {"enabled": True, "host": reencrypt},
    }}}}}, namespace)

    for host_name, expected in ((passthrough, "passthrough"), (reencrypt, "reencrypt")):
        result = wait_for(
            f"{expected} route {host_name}",
            lambda: route_for_host(client, namespace, host_name),
            lambda route: route is not None,
            timeout=client.waits.route_timeout,
            interval=client.waits.interval,
            progress_every=client.waits.progress_every,
            policy=FailurePolicy.WARN,
            log=log,
        )
        if result.success:
            termination = lookup(result.value, "spec.tls.termination") or expected
            log.info(f"Route {result.value['metadata']['name']} serves https://{host_name} (termination: {termination})")
    return passthrough, reencrypt
