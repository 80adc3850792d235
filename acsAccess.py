import os
import re
import shutil
import tempfile
from typing import Optional
import requests
import host
import state_file
from common import SetupError, PrerequisiteError
from k8sClient import K8sClient, ROUTE, lookup
from logger import logger
from osaConfig import AcsConfig
from roxClient import RoxClient
from state_file import StateFile

log = logger.tagged("RHACS-ACCESS")

ROXCTL_MIRROR = "https://mirror.openshift.com/pub/rhacs/assets/{version}/bin/{arch}/roxctl"
HTPASSWD_SECRET = "central-htpasswd"

_ROXCTL_ARCHES = {
    ("linux", "x86_64"): "linux",
    ("linux", "aarch64"): "linux_arm64",
    ("linux", "arm64"): "linux_arm64",
    ("darwin", "x86_64"): "darwin",
    ("darwin", "arm64"): "darwin_arm64",
}


def roxctl_arch(system: str, machine: str) -> str:
    try:
        return _ROXCTL_ARCHES[(system.lower(), machine)]
    except KeyError:
        raise PrerequisiteError(f"Unsupported platform for roxctl: {system}/{machine}") from None


def parse_version(output: str) -> Optional[str]:
    m = re.search(r"\d+\.\d+\.\d+", output)
    return m.group(0) if m else None


def same_minor(installed: str, wanted: str) -> bool:
    return installed.split(".")[:2] == wanted.split(".")[:2]


def installed_roxctl_version(lh: host.LocalHost) -> Optional[str]:
    if lh.which("roxctl") is None:
        return None
    return parse_version(lh.run("roxctl version").out) or parse_version(lh.run("roxctl version --output json").out)


def install_roxctl(cfg: AcsConfig, lh: host.LocalHost = host.LocalHost()) -> str:
    """Download roxctl unless a binary of the configured minor version is on PATH."""
    current = installed_roxctl_version(lh)
    if current is not None and same_minor(current, cfg.roxctl_version):
        log.info(f"roxctl version {current} is already installed and up to date")
        return str(lh.which("roxctl"))
    if current is not None:
        log.info(f"roxctl exists but is version {current}, downloading {cfg.roxctl_version}")

    url = ROXCTL_MIRROR.format(version=cfg.roxctl_version, arch=roxctl_arch(lh.system(), lh.arch()))
    target = cfg.roxctl_path
    if not os.access(os.path.dirname(target), os.W_OK):
        target = os.path.join(os.path.expanduser("~"), "bin", "roxctl")
        os.makedirs(os.path.dirname(target), exist_ok=True)
        log.warning(f"{os.path.dirname(cfg.roxctl_path)} is not writable, installing to {target}")

    log.info(f"Downloading roxctl from {url}")
    fd, tmp = tempfile.mkstemp(prefix="roxctl.")
    try:
        with os.fdopen(fd, "wb") as f, requests.get(url, stream=True, timeout=300) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                f.write(chunk)
        os.chmod(tmp, 0o755)
        shutil.move(tmp, target)
    except requests.RequestException as e:
        raise SetupError(f"Failed to download roxctl from {url}: {e}") from e
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)

    if lh.which("roxctl") is None:
        log.warning(f"{os.path.dirname(target)} is not in PATH")
    log.info(f"roxctl {cfg.roxctl_version} installed to {target}")
    return target


def find_central_namespace(client: K8sClient, cfg: AcsConfig) -> Optional[str]:
    for ns in ("stackrox", cfg.namespace):
        if client.exists(ROUTE, "central", ns):
            return ns
    return None


def central_address(client: K8sClient, namespace: str) -> Optional[str]:
    """Prefer a central-stackrox* reencrypt route, then the central route."""
    for route in client.list_resources(ROUTE, namespace):
        host_name = lookup(route, "spec.host") or ""
        if host_name.startswith("central-stackrox"):
            return f"https://{host_name}"

    route = client.get(ROUTE, "central", namespace)
    host_name = lookup(route, "spec.host")
    if not host_name:
        return None
    scheme = "https" if lookup(route, "spec.tls") else "http"
    return f"{scheme}://{host_name}"


def admin_password(client: K8sClient, namespace: str) -> Optional[str]:
    data = client.get_secret(HTPASSWD_SECRET, namespace) or {}
    return data.get("password") or data.get("adminPassword")


def discover_access(client: K8sClient, cfg: AcsConfig, sf: StateFile) -> dict[str, str]:
    """Record where Central lives and how to log in to it."""
    namespace = find_central_namespace(client, cfg)
    if namespace is None:
        raise SetupError("RHACS Central route not found, install Central first")

    address = central_address(client, namespace)
    if address is None:
        raise SetupError(f"Central route in {namespace} has no host")

    values = {
        state_file.ROX_CENTRAL_ADDRESS: address,
        state_file.ACS_PORTAL_USERNAME: cfg.portal_username,
        state_file.GRPC_ENFORCE_ALPN_ENABLED: "false",
    }
    password = admin_password(client, namespace)
    if password:
        values[state_file.ACS_PORTAL_PASSWORD] = password
    else:
        log.warning(f"Admin password not found in secret {HTPASSWD_SECRET}, set ACS_PORTAL_PASSWORD manually")

    sf.update(values)
    log.info(f"ROX_CENTRAL_ADDRESS: {address}")
    log.info(f"ACS_PORTAL_USERNAME: {cfg.portal_username}")
    return values


def rox_client(sf: StateFile, *, verify: bool = False, use_token: bool = True) -> RoxClient:
    address = sf.get(state_file.ROX_CENTRAL_ADDRESS)
    if not address:
        raise SetupError("ROX_CENTRAL_ADDRESS is not set, run the access step first")
    return RoxClient(
        address,
        token=sf.get(state_file.ROX_API_TOKEN) if use_token else None,
        username=sf.get(state_file.ACS_PORTAL_USERNAME, "admin"),
        password=sf.get(state_file.ACS_PORTAL_PASSWORD),
        verify=verify,
    )


def ensure_api_token(cfg: AcsConfig, sf: StateFile, *, force: bool = False, verify: bool = False) -> str:
    existing = sf.get(state_file.ROX_API_TOKEN)
    if existing and not force:
        log.info(f"Using stored API token (length: {len(existing)} chars)")
        return existing

    rox = rox_client(sf, verify=verify, use_token=False)
    log.info(f"Generating API token '{cfg.api_token_name}' with role {cfg.api_token_role}")
    token = rox.generate_api_token(cfg.api_token_name, cfg.api_token_role)
    sf[state_file.ROX_API_TOKEN] = token
    log.info("API token stored")
    return token


def setup_access(client: K8sClient, cfg: AcsConfig, sf: StateFile, *, force_token: bool = False, verify: bool = False) -> None:
    discover_access(client, cfg, sf)
    ensure_api_token(cfg, sf, force=force_token, verify=verify)
