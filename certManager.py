import re
from typing import Optional
import templates
from common import PrerequisiteError, SetupError
from k8sClient import K8sClient, ACME_ORDER, CERTIFICATE, CERTIFICATE_REQUEST, CLUSTER_ISSUER, DNS_CONFIG, INGRESS_CONFIG, get_condition, lookup
from logger import logger
from osaConfig import AcsConfig
from poller import wait_for

log = logger.tagged("RHACS-TLS")

CERTIFICATE_CRD = "certificates.cert-manager.io"


def domain_from_console_host(console_host: str) -> Optional[str]:
    """console-openshift-console.apps.example.com -> example.com"""
    domain = re.sub(r"^[^.]*\.apps\.", "", console_host, count=1)
    if not domain or domain == console_host:
        return None
    return domain


def cluster_domain(client: K8sClient) -> str:
    console = client.route_host("console", "openshift-console")
    if console:
        domain = domain_from_console_host(console)
        if domain:
            log.info(f"Cluster domain from console route: {domain}")
            return domain

    for kind, path in ((DNS_CONFIG, "spec.baseDomain"), (INGRESS_CONFIG, "spec.domain")):
        domain = client.field(kind, "cluster", None, path)
        if domain:
            log.info(f"Cluster domain from {kind.kind.lower()}.config: {domain}")
            return str(domain)

    raise SetupError("Could not determine cluster domain. Please ensure cluster routes are accessible.")


def certificate_status(client: K8sClient, name: str, namespace: str) -> str:
    """Short human readable progress of a cert-manager Certificate."""
    cert = client.get(CERTIFICATE, name, namespace)
    if cert is None:
        return "not created"
    ready = get_condition(cert, "Ready")
    if ready and ready.get("status") == "True":
        return "Ready"
    if ready and ready.get("reason") not in (None, "", "DoesNotExist"):
        return f"Status: {ready['reason']}"

    selector = f"acme.cert-manager.io/certificate-name={name}"
    orders = client.list_resources(ACME_ORDER, namespace, label_selector=selector)
    if orders and lookup(orders[0], "status.state"):
        return f"ACME Order: {orders[0]['status']['state']}"

    cert_requests = client.list_resources(CERTIFICATE_REQUEST, namespace, label_selector=f"cert-manager.io/certificate-name={name}")
    if cert_requests:
        req_ready = get_condition(cert_requests[0], "Ready")
        if req_ready and req_ready.get("reason"):
            return f"CertificateRequest: {req_ready['reason']}"
    return "Processing (cert-manager is working on it)"


def _dump_certificate_diagnostics(client: K8sClient, name: str, namespace: str) -> None:
    ready = get_condition(client.get(CERTIFICATE, name, namespace), "Ready") or {}
    log.error(f"Certificate {name}: reason={ready.get('reason')} message={ready.get('message')}")
    for req in client.list_resources(CERTIFICATE_REQUEST, namespace, label_selector=f"cert-manager.io/certificate-name={name}"):
        cond = get_condition(req, "Ready") or {}
        log.error(f"CertificateRequest {req['metadata']['name']}: status={cond.get('status')} reason={cond.get('reason')}")
    log.error(f"Troubleshoot with: oc describe certificate {name} -n {namespace}")


def setup_central_tls(client: K8sClient, cfg: AcsConfig) -> str:
    """Issue a certificate for Central and store it as Central's default TLS secret."""
    if not client.crd_exists(CERTIFICATE_CRD):
        raise PrerequisiteError("cert-manager CRDs not found, install cert-manager first")
    if not client.exists(CLUSTER_ISSUER, cfg.tls_issuer):
        raise PrerequisiteError(f"ClusterIssuer '{cfg.tls_issuer}' not found")

    client.ensure_namespace(cfg.namespace)
    dns_name = f"central.apps.{cluster_domain(client)}"
    log.info(f"Requesting certificate for {dns_name}")

    body = templates.render_resource(
        "certificate.yaml.j2",
        name=cfg.tls_certificate_name,
        namespace=cfg.namespace,
        secret_name=cfg.tls_secret_name,
        issuer=cfg.tls_issuer,
        dns_names=[dns_name],
    )
    client.apply(CERTIFICATE, body)

    waits = client.waits
    wait_for(
        f"Certificate {cfg.tls_certificate_name} to become Ready",
        lambda: certificate_status(client, cfg.tls_certificate_name, cfg.namespace),
        lambda status: status == "Ready",
        timeout=waits.certificate_timeout,
        interval=waits.interval,
        progress_every=waits.progress_every,
        diagnostics=lambda: _dump_certificate_diagnostics(client, cfg.tls_certificate_name, cfg.namespace),
        log=log,
    )

    issued = client.get_secret(cfg.tls_secret_name, cfg.namespace)
    if not issued or not issued.get("tls.crt") or not issued.get("tls.key"):
        raise SetupError(f"Secret '{cfg.tls_secret_name}' does not contain tls.crt and tls.key")

    client.create_secret(
        cfg.central_tls_secret,
        cfg.namespace,
        {"tls.crt": issued["tls.crt"], "tls.key": issued["tls.key"]},
        secret_type="kubernetes.io/tls",
        replace=True,
    )
    log.info(f"Central TLS secret {cfg.central_tls_secret} ready for {dns_name}")
    return dns_name

