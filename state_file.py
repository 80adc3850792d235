import os
import json
from typing import Iterable, Optional
from common import atomic_write
from logger import logger

ROX_API_TOKEN = "ROX_API_TOKEN"
ROX_CENTRAL_ADDRESS = "ROX_CENTRAL_ADDRESS"
ACS_PORTAL_USERNAME = "ACS_PORTAL_USERNAME"
ACS_PORTAL_PASSWORD = "ACS_PORTAL_PASSWORD"
GRPC_ENFORCE_ALPN_ENABLED = "GRPC_ENFORCE_ALPN_ENABLED"
TUTORIAL_HOME = "TUTORIAL_HOME"
OIDC_ISSUER_URL = "OIDC_ISSUER_URL"
OIDC_CLIENT_ID = "OIDC_CLIENT_ID"

KNOWN_KEYS = (
    ROX_API_TOKEN,
    ROX_CENTRAL_ADDRESS,
    ACS_PORTAL_USERNAME,
    ACS_PORTAL_PASSWORD,
    GRPC_ENFORCE_ALPN_ENABLED,
    TUTORIAL_HOME,
    OIDC_ISSUER_URL,
    OIDC_CLIENT_ID,
)

BASHRC_BEGIN = "# >>> osa session variables >>>"
BASHRC_END = "# <<< osa session variables <<<"
SECRET_KEYS = (ROX_API_TOKEN, ACS_PORTAL_PASSWORD)


class StateFile:
    """Session values shared between steps, one JSON document per profile.

    Reads look at the process environment first so a value exported by
    the user always wins over what a previous run recorded.
    """

    def __init__(self, profile: str, path: str, *, use_env: bool = True) -> None:
        self.profile = profile
        self.path = os.path.join(os.path.normpath(path), profile)
        self.use_env = use_env

    def _load_state(self) -> dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed state file {self.path}")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save_state(self, state: dict[str, str]) -> None:
        with atomic_write(self.path, mode=0o600) as f:
            f.write(json.dumps(state, indent=4, sort_keys=True))

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.use_env:
            env_val = os.environ.get(key)
            if env_val:
                return env_val
        return self._load_state().get(key, default)

    def __getitem__(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __setitem__(self, key: str, value: str) -> None:
        self.update({key: value})

    def update(self, values: dict[str, str]) -> None:
        state = self._load_state()
        state.update(values)
        self._save_state(state)
        for k in values:
            logger.debug(f"Stored {k} in {self.path}")

    def remove(self, keys: Iterable[str]) -> None:
        state = self._load_state()
        for k in keys:
            state.pop(k, None)
        self._save_state(state)

    def clear_state(self) -> None:
        if os.path.exists(self.path):
            os.unlink(self.path)

    def items(self) -> dict[str, str]:
        return self._load_state()

    def __str__(self) -> str:
        masked = {k: ("********" if k in SECRET_KEYS else v) for k, v in self._load_state().items()}
        return json.dumps(masked, indent=4, sort_keys=True)


def render_export_block(values: dict[str, str]) -> str:
    lines = [BASHRC_BEGIN]
    for k in sorted(values):
        escaped = values[k].replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$")
        lines.append(f'export {k}="{escaped}"')
    lines.append(BASHRC_END)
    return "\n".join(lines) + "\n"


def replace_export_block(content: str, block: str) -> str:
    """Swap the managed block in content for block, leaving every other line alone."""
    out: list[str] = []
    inside = False
    replaced = False
    for line in content.splitlines(keepends=True):
        stripped = line.rstrip("\n")
        if stripped == BASHRC_BEGIN:
            inside = True
            if not replaced:
                out.append(block)
                replaced = True
            continue
        if stripped == BASHRC_END and inside:
            inside = False
            continue
        if not inside:
            out.append(line)

    if not replaced:
        if out and not out[-1].endswith("\n"):
            out.append("\n")
        out.append(block)
    return "".join(out)


def export_bashrc(sf: StateFile, bashrc_path: Optional[str] = None) -> str:
    if bashrc_path is None:
        bashrc_path = os.path.join(os.path.expanduser("~"), ".bashrc")

    content = ""
    if os.path.exists(bashrc_path):
        with open(bashrc_path) as f:
            content = f.read()

    new_content = replace_export_block(content, render_export_block(sf.items()))
    if new_content != content:
        with atomic_write(bashrc_path) as f:
            f.write(new_content)
        logger.info(f"Updated session variables in {bashrc_path}")
    return bashrc_path
