import os
from urllib.parse import urlparse
import templates
from common import SetupError, atomic_write
from k8sClient import K8sClient, CENTRAL, SECURED_CLUSTER
from logger import logger
from osaConfig import AcsConfig
from roxClient import RoxClient

log = logger.tagged("RHACS-SECURED-CLUSTER")


def bundle_name(cfg: AcsConfig) -> str:
    return f"{cfg.cluster_name}-init-bundle"


def bundle_path(cfg: AcsConfig) -> str:
    return os.path.join(cfg.init_bundle_dir, f"{bundle_name(cfg)}-cluster-init-secrets.yaml")


def ensure_init_bundle(rox: RoxClient, cfg: AcsConfig) -> str:
    """Return the kubectl init bundle, generating it in Central when no saved copy exists."""
    path = bundle_path(cfg)
    if os.path.exists(path):
        log.info(f"Using saved init bundle {path}")
        with open(path) as f:
            return f.read()

    name = bundle_name(cfg)
    if any(b.get("name") == name for b in rox.list_init_bundles()):
        raise SetupError(f"Init bundle {name} already exists in Central but {path} is missing; revoke it in Central and rerun")

    log.info(f"Generating init bundle {name}")
    kubectl_bundle, _ = rox.create_init_bundle(name)
    with atomic_write(path, mode=0o600) as f:
        f.write(kubectl_bundle)
    log.info(f"Init bundle written to {path}")
    return kubectl_bundle


def central_endpoint(client: K8sClient, cfg: AcsConfig, central_address: str) -> str:
    if client.exists(CENTRAL, cfg.central_name, cfg.namespace):
        return f"central.{cfg.namespace}.svc:443"
    parsed = urlparse(central_address if "://" in central_address else f"https://{central_address}")
    return f"{parsed.hostname}:{parsed.port or 443}"


def install_secured_cluster(client: K8sClient, rox: RoxClient, cfg: AcsConfig) -> None:
    client.ensure_namespace(cfg.namespace)
    bundle = ensure_init_bundle(rox, cfg)
    client.apply_manifest(bundle, cfg.namespace)

    body = templates.render_resource(
        "secured-cluster.yaml.j2",
        name=cfg.secured_cluster_name,
        namespace=cfg.namespace,
        cluster_name=cfg.cluster_name,
        central_endpoint=central_endpoint(client, cfg, rox.base_url),
    )
    client.apply(SECURED_CLUSTER, body)
    client.wait_for_condition(SECURED_CLUSTER, cfg.secured_cluster_name, cfg.namespace, "Deployed", timeout=client.waits.central_timeout)
    log.info(f"SecuredCluster {cfg.secured_cluster_name} deployed for cluster {cfg.cluster_name}")
