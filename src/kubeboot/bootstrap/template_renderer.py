from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pathlib import Path
import os
import re

TEMPLATES_DIR = Path(__file__).parent / "templates"


def expand_env_vars(value: str) -> str:
    return re.sub(r"\$\{([^}^{]+)\}", lambda m: os.getenv(m.group(1), m.group(0)), value)


class TemplateRenderer:
    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: dict) -> str:
        expanded = {k: expand_env_vars(v) if isinstance(v, str) else v for k, v in context.items()}
        tmpl = self.env.get_template(template_name)
        return tmpl.render(**expanded)
