from dataclasses import dataclass
from typing import Optional
import keycloak
import state_file
import templates
from common import PrerequisiteError, SetupError
from k8sClient import K8sClient, AUTHENTICATION_CONFIG, OAUTH_CLIENT, SECURESIGN, false_conditions, condition_status, lookup
from logger import logger
from olm import OperatorInstaller, OperatorSpec
from osaConfig import KeycloakConfig, OidcProvider, RhtasConfig
from poller import FailurePolicy, wait_for
from state_file import StateFile

log = logger.tagged("RHTAS")

SECURESIGN_CRD = "securesigns.rhtas.redhat.com"
COMPONENTS = ("Tuf", "Fulcio", "Rekor")


@dataclass
class OidcSettings:
    provider: OidcProvider
    issuer_url: str
    client_id: str


def operator_spec(cfg: RhtasConfig) -> OperatorSpec:
    return OperatorSpec(
        package=cfg.operator_package,
        namespace=cfg.operator_namespace,
        channel=cfg.channel,
        source=cfg.source,
        subscription_name=cfg.subscription_name,
        csv_display_name=cfg.csv_display_name,
    )


def openshift_issuer(client: K8sClient) -> str:
    url = client.field(AUTHENTICATION_CONFIG, "cluster", None, "status.oauthServerURL")
    if url:
        return str(url)
    host_name = client.route_host("oauth-openshift", "openshift-authentication")
    if host_name:
        return f"https://{host_name}"
    raise SetupError("Could not retrieve the OpenShift OAuth issuer URL")


def ensure_oauth_client(client: K8sClient, cfg: RhtasConfig, redirect_uris: list[str]) -> None:
    if client.exists(OAUTH_CLIENT, cfg.oauth_client_id):
        log.info(f"OAuth client '{cfg.oauth_client_id}' already exists")
        return
    body = templates.render_resource(
        "oauth-client.yaml.j2",
        name=cfg.oauth_client_id,
        secret=cfg.oauth_client_secret,
        redirect_uris=redirect_uris,
    )
    client.create(OAUTH_CLIENT, body)
    log.info(f"OAuth client '{cfg.oauth_client_id}' created")


def resolve_oidc(client: K8sClient, cfg: RhtasConfig, kc: KeycloakConfig, provider: OidcProvider, *, verify: bool = False) -> OidcSettings:
    if provider == "openshift":
        ensure_oauth_client(client, cfg, kc.redirect_uris)
        return OidcSettings(provider, openshift_issuer(client), cfg.oauth_client_id)

    url = keycloak.keycloak_url(client, kc)
    if url is None:
        raise PrerequisiteError(f"Keycloak route not found in {kc.namespace}, install Keycloak first")
    if not keycloak.ensure_client_resource(client, kc):
        keycloak.ensure_client_via_api(client, kc, verify=verify)
    return OidcSettings(provider, f"{url}/auth/realms/{kc.realm}", kc.client_id)


def components_available(client: K8sClient, cfg: RhtasConfig) -> bool:
    obj = client.get(SECURESIGN, cfg.securesign_name, cfg.namespace)
    return all(condition_status(obj, f"{c}Available") == "True" for c in COMPONENTS)


def _log_false_conditions(client: K8sClient, cfg: RhtasConfig) -> None:
    obj = client.get(SECURESIGN, cfg.securesign_name, cfg.namespace)
    if obj is None:
        log.error(f"Securesign {cfg.securesign_name} not found in {cfg.namespace}")
        return
    for cond in false_conditions(obj):
        log.error(f"{cond.get('type')}: {cond.get('reason', '')} {cond.get('message', '')}".rstrip())
    log.error(f"Check pods with: oc get pods -n {cfg.namespace}")


def service_urls(client: K8sClient, cfg: RhtasConfig) -> dict[str, Optional[str]]:
    obj = client.get(SECURESIGN, cfg.securesign_name, cfg.namespace)
    return {c: lookup(obj, f"status.{c.lower()}.url") for c in COMPONENTS}


def install_rhtas(
    client: K8sClient,
    cfg: RhtasConfig,
    kc: KeycloakConfig,
    sf: StateFile,
    *,
    provider: Optional[OidcProvider] = None,
    verify: bool = False,
) -> dict[str, Optional[str]]:
    """Install Trusted Artifact Signer with Fulcio trusting the chosen OIDC provider."""
    provider = provider or cfg.oidc_provider
    log.info(f"Using OIDC provider: {provider}")
    oidc = resolve_oidc(client, cfg, kc, provider, verify=verify)
    log.info(f"OIDC Issuer URL: {oidc.issuer_url}")

    OperatorInstaller(client).install(operator_spec(cfg))
    wait_for(
        f"CRD {SECURESIGN_CRD}",
        lambda: client.crd_exists(SECURESIGN_CRD),
        timeout=120,
        interval=client.waits.interval,
        log=log,
    )

    client.ensure_namespace(cfg.namespace)
    body = templates.render_resource(
        "securesign.yaml.j2",
        name=cfg.securesign_name,
        namespace=cfg.namespace,
        common_name=cfg.common_name,
        organization_name=cfg.organization_name,
        organization_email=cfg.organization_email,
        client_id=oidc.client_id,
        issuer_url=oidc.issuer_url,
    )
    client.apply(SECURESIGN, body)

    waits = client.waits
    wait_for(
        f"Securesign {cfg.securesign_name} components to become available",
        lambda: components_available(client, cfg),
        timeout=waits.securesign_timeout,
        interval=waits.interval,
        progress_every=waits.progress_every,
        policy=FailurePolicy.FAIL,
        diagnostics=lambda: _log_false_conditions(client, cfg),
        log=log,
    )

    sf.update({state_file.OIDC_ISSUER_URL: oidc.issuer_url, state_file.OIDC_CLIENT_ID: oidc.client_id})
    urls = service_urls(client, cfg)
    for component, url in urls.items():
        log.info(f"{component} URL: {url or 'not reported'}")
    log.info(f"export COSIGN_OIDC_ISSUER={oidc.issuer_url}")
    log.info(f"export COSIGN_OIDC_CLIENT_ID={oidc.client_id}")
    return urls
