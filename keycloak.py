from typing import Any, Optional
import requests
import tenacity
import urllib3
import templates
from common import SetupError
from k8sClient import K8sClient, KEYCLOAK, KEYCLOAK_CLIENT, KEYCLOAK_REALM, KEYCLOAK_USER, Resource, ResourceKind, lookup
from logger import logger
from olm import OperatorInstaller, OperatorSpec
from osaConfig import KeycloakConfig, KeycloakUserConfig
from poller import FailurePolicy, wait_for

log = logger.tagged("KEYCLOAK")

KEYCLOAK_ROUTE = "keycloak"


class KeycloakApiError(SetupError):
    def __init__(self, method: str, path: str, status: int, body: str):
        super().__init__(f"{method} {path} returned HTTP {status}: {body[:500]}")
        self.status = status


def operator_spec(cfg: KeycloakConfig) -> OperatorSpec:
    return OperatorSpec(
        package=cfg.operator_package,
        namespace=cfg.namespace,
        channel=cfg.channel,
        operator_group=cfg.operator_group,
        target_namespaces=(cfg.namespace,),
    )


def is_ready(obj: Optional[Resource]) -> bool:
    """The RHSSO operator reports readiness either way depending on its version."""
    return lookup(obj, "status.ready") is True or lookup(obj, "status.phase") == "reconciled"


def user_resource_name(cfg: KeycloakConfig, user: KeycloakUserConfig) -> str:
    return f"{cfg.realm}-{user.username}"


def _wait_ready(client: K8sClient, kind: ResourceKind, name: str, namespace: str, timeout: float, policy: FailurePolicy) -> bool:
    waits = client.waits
    result = wait_for(
        f"{kind.kind} {name} to be ready",
        lambda: client.get(kind, name, namespace),
        is_ready,
        timeout=timeout,
        interval=waits.interval,
        progress_every=waits.progress_every,
        policy=policy,
        diagnostics=lambda: log.info(client.dump(kind, name, namespace)),
        log=log,
    )
    return result.success


def keycloak_url(client: K8sClient, cfg: KeycloakConfig) -> Optional[str]:
    url = client.field(KEYCLOAK, cfg.instance_name, cfg.namespace, "status.externalURL")
    if url:
        return str(url).rstrip("/")
    route = client.route_host(KEYCLOAK_ROUTE, cfg.namespace)
    return f"https://{route}" if route else None


def admin_credentials(client: K8sClient, cfg: KeycloakConfig) -> Optional[tuple[str, str]]:
    secret_name = client.field(KEYCLOAK, cfg.instance_name, cfg.namespace, "status.credentialSecret") or f"credential-{cfg.instance_name}"
    data = client.get_secret(str(secret_name), cfg.namespace)
    if not data:
        return None
    user = data.get("ADMIN_USERNAME") or data.get("username")
    password = data.get("ADMIN_PASSWORD") or data.get("password")
    if not user or not password:
        return None
    return user, password


def install_keycloak(client: K8sClient, cfg: KeycloakConfig) -> Optional[str]:
    """Install RHSSO and create the realm, users and client used for signing.

    The Keycloak instance itself must become ready; the realm, users and
    client are only warned about since the operator keeps reconciling them.
    """
    OperatorInstaller(client).install(operator_spec(cfg))

    body = templates.render_resource("keycloak.yaml.j2", name=cfg.instance_name, namespace=cfg.namespace)
    client.apply(KEYCLOAK, body)
    _wait_ready(client, KEYCLOAK, cfg.instance_name, cfg.namespace, client.waits.keycloak_timeout, FailurePolicy.FAIL)

    realm = templates.render_resource("keycloak-realm.yaml.j2", realm=cfg.realm, namespace=cfg.namespace)
    client.apply(KEYCLOAK_REALM, realm)
    _wait_ready(client, KEYCLOAK_REALM, cfg.realm, cfg.namespace, client.waits.default_timeout, FailurePolicy.WARN)

    for user in cfg.users:
        name = user_resource_name(cfg, user)
        body = templates.render_resource("keycloak-user.yaml.j2", name=name, namespace=cfg.namespace, realm=cfg.realm, user=user)
        client.apply(KEYCLOAK_USER, body)
        _wait_ready(client, KEYCLOAK_USER, name, cfg.namespace, client.waits.default_timeout, FailurePolicy.WARN)

    ensure_client_resource(client, cfg)

    url = keycloak_url(client, cfg)
    log.info(f"Keycloak URL: {url or 'unknown'}")
    log.info(f"Realm: {cfg.realm}, client: {cfg.client_id}")
    if admin_credentials(client, cfg) is None:
        log.warning(f"Admin credentials not found, check secret credential-{cfg.instance_name} in {cfg.namespace}")
    return url


def ensure_client_resource(client: K8sClient, cfg: KeycloakConfig) -> bool:
    body = templates.render_resource(
        "keycloak-client.yaml.j2",
        client_id=cfg.client_id,
        namespace=cfg.namespace,
        realm=cfg.realm,
        redirect_uris=cfg.redirect_uris,
    )
    client.apply(KEYCLOAK_CLIENT, body)
    return _wait_ready(client, KEYCLOAK_CLIENT, cfg.client_id, cfg.namespace, client.waits.default_timeout, FailurePolicy.WARN)


def uninstall_keycloak(client: K8sClient, cfg: KeycloakConfig) -> None:
    client.delete(KEYCLOAK_CLIENT, cfg.client_id, cfg.namespace)
    for user in cfg.users:
        client.delete(KEYCLOAK_USER, user_resource_name(cfg, user), cfg.namespace)
    client.delete(KEYCLOAK_REALM, cfg.realm, cfg.namespace)
    client.delete(KEYCLOAK, cfg.instance_name, cfg.namespace)
    OperatorInstaller(client).uninstall(operator_spec(cfg))
    client.delete_namespace(cfg.namespace)
    log.info(f"Keycloak removed from {cfg.namespace}")


def client_representation(cfg: KeycloakConfig) -> dict[str, Any]:
    return {
        "clientId": cfg.client_id,
        "enabled": True,
        "protocol": "openid-connect",
        "publicClient": True,
        "standardFlowEnabled": True,
        "directAccessGrantsEnabled": True,
        "redirectUris": list(cfg.redirect_uris),
        "webOrigins": ["+"],
        "attributes": {"access.token.lifespan": "300"},
    }


class KeycloakAdmin:
    """Keycloak admin REST API, authenticated as the master realm admin."""

    def __init__(self, url: str, username: str, password: str, *, verify: bool = False, timeout: float = 30):
        self.url = url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = verify
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        self._token: Optional[str] = None

    @tenacity.retry(
        wait=tenacity.wait_fixed(2),
        stop=tenacity.stop_after_attempt(5),
        retry=tenacity.retry_if_exception_type(requests.exceptions.ConnectionError),
        reraise=True,
    )
    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        return self.session.request(method, f"{self.url}{path}", timeout=self.timeout, **kwargs)

    def token(self) -> str:
        if self._token is None:
            path = "/auth/realms/master/protocol/openid-connect/token"
            data = {"username": self.username, "password": self.password, "grant_type": "password", "client_id": "admin-cli"}
            response = self._send("POST", path, data=data)
            if response.status_code != 200:
                raise KeycloakApiError("POST", path, response.status_code, response.text)
            token = response.json().get("access_token")
            if not token:
                raise SetupError("Keycloak token response has no access_token")
            self._token = str(token)
        return self._token

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token()}"}

    def find_client(self, realm: str, client_id: str) -> Optional[dict[str, Any]]:
        path = f"/auth/admin/realms/{realm}/clients"
        response = self._send("GET", path, params={"clientId": client_id}, headers=self._headers())
        if response.status_code != 200:
            raise KeycloakApiError("GET", path, response.status_code, response.text)
        for c in response.json():
            if c.get("clientId") == client_id:
                return dict(c)
        return None

    def create_client(self, realm: str, representation: dict[str, Any]) -> bool:
        """True if created, False if a client with that clientId was already there."""
        path = f"/auth/admin/realms/{realm}/clients"
        response = self._send("POST", path, json=representation, headers=self._headers())
        if response.status_code == 201:
            return True
        if response.status_code == 409:
            return False
        raise KeycloakApiError("POST", path, response.status_code, response.text)


def ensure_client_via_api(client: K8sClient, cfg: KeycloakConfig, *, verify: bool = False) -> bool:
    """Create the OIDC client through the admin API when the CR route is not enough.

    Returns False, with a warning, when the admin API cannot be reached so the
    caller can continue and the client can be created by hand.
    """
    url = keycloak_url(client, cfg)
    creds = admin_credentials(client, cfg)
    if url is None or creds is None:
        log.warning(f"Could not find Keycloak URL or admin credentials; create client {cfg.client_id} in realm {cfg.realm} manually")
        return False

    admin = KeycloakAdmin(url, *creds, verify=verify)
    try:
        if admin.find_client(cfg.realm, cfg.client_id) is not None:
            log.info(f"OAuth client '{cfg.client_id}' already exists in realm '{cfg.realm}'")
            return True
        if admin.create_client(cfg.realm, client_representation(cfg)):
            log.info(f"OAuth client '{cfg.client_id}' created in realm '{cfg.realm}'")
        return True
    except (KeycloakApiError, requests.exceptions.RequestException) as e:
        log.warning(f"Failed to create OAuth client through the Keycloak admin API: {e}")
        return False
