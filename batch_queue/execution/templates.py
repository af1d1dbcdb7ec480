"""
Jinja2 templates for pod manifests and helper scripts.
"""

import os
import shlex

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from batch_queue.core.telemetry import get_logger

logger = get_logger(__name__)

TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(__file__)), "job_templates"
)

jinja_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)
jinja_env.filters["shell_quote"] = lambda value: shlex.quote(str(value))


def render(template_name: str, **context) -> str:
    """Render a template from job_templates."""
    return jinja_env.get_template(template_name).render(**context)


def write_script(path: str, template_name: str, **context) -> bool:
    """
    Write an executable helper script unless it already exists.

    Returns:
        True if the script was written
    """
    if os.access(path, os.F_OK | os.X_OK):
        return False

    logger.info(f"Generating helper script {path} from {template_name}")
    with open(path, "w") as f:
        f.write(render(template_name, **context))
    os.chmod(path, 0o755)
    return True
