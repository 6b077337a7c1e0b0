"""
Jinja2 template registry backed by a markflow environment.

Template names are "<workflow>/<template>" or "<workflow>/<template>@<variant>".
Lookups go through the environment, so a project template overrides the
system one and a missing variant falls back to default.md.
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from jinja2 import BaseLoader, Environment, Template, TemplateNotFound, TemplateSyntaxError
from jinja2.exceptions import UndefinedError as JinjaUndefinedError

from markflow.contexts.environment.environment import Environment as ResourceEnvironment
from markflow.utils.exceptions import NotFoundError, ValidationError


def template_key(workflow: str, template: str, variant: Optional[str] = None) -> str:
    key = f"{workflow}/{template}"
    return f"{key}@{variant}" if variant else key


class EnvironmentLoader(BaseLoader):
    """Jinja2 loader that reads templates from a markflow environment."""

    def __init__(self, environment: ResourceEnvironment):
        self.environment = environment

    def get_source(self, jinja_env: Environment, template: str):
        name, _, variant = template.partition("@")
        workflow, _, template_name = name.partition("/")
        try:
            source = self.environment.get_template(workflow, template_name, variant or None)
        except NotFoundError as e:
            raise TemplateNotFound(template) from e
        # Environment reads are cheap; never treat a cached template as stale
        return source, None, lambda: True


class TemplateRegistry:
    """
    Registry for loading, caching and rendering collection templates.

    Templates are plain markdown with Jinja2 placeholders ({{ user.name }},
    {{ company }}, {% if prefix %}...{% endif %}). Undefined variables render
    as empty strings.
    """

    def __init__(self, environment: ResourceEnvironment):
        self.environment = environment
        self._cache: Dict[str, Template] = {}
        self.env = Environment(
            loader=EnvironmentLoader(environment),
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            keep_trailing_newline=True,
        )

    def get_template(self, workflow: str, template: str, variant: Optional[str] = None) -> Template:
        """
        Get a template, loading and caching it if necessary.

        Raises:
            NotFoundError: No template (or default) in any environment layer
            ValidationError: Template has Jinja2 syntax errors
        """
        key = template_key(workflow, template, variant)
        if key in self._cache:
            return self._cache[key]

        try:
            loaded = self.env.get_template(key)
        except TemplateNotFound as e:
            raise NotFoundError(f"Template '{template}' not found for workflow '{workflow}'") from e
        except TemplateSyntaxError as e:
            raise ValidationError(f"Template syntax error in {key} (line {e.lineno}): {e.message}") from e

        self._cache[key] = loaded
        return loaded

    def render(
        self,
        workflow: str,
        template: str,
        context: Mapping[str, Any],
        variant: Optional[str] = None,
    ) -> str:
        return _render(self.get_template(workflow, template, variant), context, template)

    def render_string(self, source: str, context: Mapping[str, Any]) -> str:
        """Render an inline template string (e.g. an output filename pattern)."""
        try:
            compiled = self.env.from_string(source)
        except TemplateSyntaxError as e:
            raise ValidationError(f"Template syntax error in '{source}': {e.message}") from e
        return _render(compiled, context, source)

    def clear_cache(self) -> None:
        """Clear the template cache."""
        self._cache.clear()

    def is_cached(self, workflow: str, template: str, variant: Optional[str] = None) -> bool:
        return template_key(workflow, template, variant) in self._cache


def _render(template: Template, context: Mapping[str, Any], name: str) -> str:
    try:
        return template.render(**context)
    except JinjaUndefinedError as e:
        raise ValidationError(f"Template '{name}' references undefined data: {e}") from e


def build_template_context(
    user: Mapping[str, Any],
    fields: Mapping[str, Any],
    now: datetime,
    collection_id: str,
    workflow: str,
) -> Dict[str, Any]:
    """
    Variables available to collection templates.

    `date` is a long human-readable date ("July 30, 2025"); `date_iso` is
    YYYY-MM-DD.
    """
    return {
        **fields,
        "user": dict(user),
        "date": f"{now.strftime('%B')} {now.day}, {now.year}",
        "date_iso": now.strftime("%Y-%m-%d"),
        "collection_id": collection_id,
        "workflow": workflow,
    }
