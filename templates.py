import os
from typing import Any
import jinja2
import yaml
from logger import logger

MANIFEST_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "manifests")

_env = jinja2.Environment(
    loader=jinja2.FileSystemLoader(MANIFEST_DIR),
    undefined=jinja2.StrictUndefined,
    keep_trailing_newline=True,
)


def render(template: str, **kwargs: Any) -> str:
    rendered = _env.get_template(template).render(**kwargs)
    logger.debug(rendered)
    return rendered


def render_resource(template: str, **kwargs: Any) -> dict[str, Any]:
    return dict(yaml.safe_load(render(template, **kwargs)))


def list_templates() -> list[str]:
    return sorted(t for t in _env.list_templates() if t.endswith(".j2"))
