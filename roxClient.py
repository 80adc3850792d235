import base64
from typing import Any, Optional
import requests
import tenacity
import urllib3
from common import SetupError
from logger import logger

log = logger.tagged("RHACS-API")


class RoxApiError(SetupError):
    def __init__(self, method: str, path: str, status: int, body: str):
        super().__init__(f"{method} {path} returned HTTP {status}: {body[:500]}")
        self.method = method
        self.path = path
        self.status = status
        self.body = body


def normalize_address(address: str) -> str:
    """ROX_CENTRAL_ADDRESS may be 'host', 'host:443' or a full URL."""
    address = address.strip().rstrip("/")
    if not address.startswith(("http://", "https://")):
        address = f"https://{address}"
    return address


class RoxClient:
    """Thin client for the RHACS Central REST API.

    Calls authenticate with the API token when one is set, and with the
    portal user's basic auth otherwise.
    """

    def __init__(
        self,
        address: str,
        *,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify: bool = False,
        timeout: float = 60,
    ):
        self.base_url = normalize_address(address)
        self.token = token
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = requests.Session()
        self.session.verify = verify
        if not verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _auth_headers(self, basic: bool) -> dict[str, str]:
        if basic or not self.token:
            if self.username is None or self.password is None:
                raise SetupError("No RHACS API token or admin credentials available")
            creds = base64.b64encode(f"{self.username}:{self.password}".encode()).decode()
            return {"Authorization": f"Basic {creds}"}
        return {"Authorization": f"Bearer {self.token}"}

    @tenacity.retry(
        wait=tenacity.wait_fixed(2),
        stop=tenacity.stop_after_attempt(5),
        retry=tenacity.retry_if_exception_type(requests.exceptions.ConnectionError),
        reraise=True,
    )
    def _send(self, method: str, url: str, headers: dict[str, str], body: Any) -> requests.Response:
        return self.session.request(method, url, headers=headers, json=body, timeout=self.timeout)

    def request(self, method: str, path: str, body: Any = None, *, basic: bool = False, ok: tuple[int, ...] = ()) -> Any:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        headers.update(self._auth_headers(basic))
        log.debug(f"{method} {self.base_url}{path}")
        response = self._send(method, f"{self.base_url}{path}", headers, body)
        if not (200 <= response.status_code < 300 or response.status_code in ok):
            raise RoxApiError(method, path, response.status_code, response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def get_config(self) -> dict[str, Any]:
        return dict(self.request("GET", "/v1/config"))

    def put_config(self, document: dict[str, Any]) -> dict[str, Any]:
        """document is the full body returned by get_config, with the edits applied."""
        return dict(self.request("PUT", "/v1/config", document))

    def list_clusters(self) -> list[dict[str, Any]]:
        return list(self.request("GET", "/v1/clusters").get("clusters", []))

    def generate_api_token(self, name: str, role: str) -> str:
        ret = self.request("POST", "/v1/apitokens/generate", {"name": name, "roles": [role]}, basic=True)
        token = ret.get("token")
        if not token:
            raise SetupError(f"Token generation for {name} returned no token")
        return str(token)

    def list_init_bundles(self) -> list[dict[str, Any]]:
        return list(self.request("GET", "/v1/cluster-init/init-bundles").get("items", []))

    def create_init_bundle(self, name: str) -> tuple[str, str]:
        """Returns the kubectl secrets YAML and the helm values YAML of a new bundle."""
        ret = self.request("POST", "/v1/cluster-init/init-bundles", {"name": name})
        kubectl = base64.b64decode(ret.get("kubectlBundle", "")).decode("utf-8")
        helm = base64.b64decode(ret.get("helmValuesBundle", "")).decode("utf-8")
        if not kubectl:
            raise SetupError(f"Init bundle {name} came back without a kubectl bundle")
        return kubectl, helm

    def list_scan_configurations(self) -> list[dict[str, Any]]:
        return list(self.request("GET", "/v2/compliance/scan/configurations").get("configurations", []))

    def delete_scan_configuration(self, config_id: str) -> None:
        self.request("DELETE", f"/v2/compliance/scan/configurations/{config_id}")

    def create_scan_configuration(self, body: dict[str, Any]) -> dict[str, Any]:
        return dict(self.request("POST", "/v2/compliance/scan/configurations", body))
