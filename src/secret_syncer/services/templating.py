"""
Template rendering for ``valueFrom.template`` data entries.

Templates are Jinja2, rendered in an immutable sandbox with strict undefined
handling. The rendering context exposes:

- ``Secrets``: mapping of every known secret id to its tags
- ``filterByTagKey(secrets, tag_key)``: the subset of ``secrets`` carrying
  ``tag_key``
- ``getSecretValue(secret_id)``: the secret's raw value as text
- ``getSecretValueMap(secret_id)``: the secret's JSON object as a dict

The value helpers are closures over the secret cache and the resource's IAM
role, so the template engine itself knows nothing about caching or access
control. Example:

    {% for id in filterByTagKey(Secrets, "team").keys() | sort %}
    {{ id }}={{ getSecretValueMap(id)["password"] }}
    {% endfor %}
"""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from jinja2 import StrictUndefined
from jinja2 import TemplateError as JinjaTemplateError
from jinja2 import TemplateSyntaxError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from ..errors import SyncError, TemplateError, TypeMismatchError

if TYPE_CHECKING:
    from .secret_cache import SecretCache

logger = logging.getLogger(__name__)

_environment = ImmutableSandboxedEnvironment(
    enable_async=True,
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def filter_by_tag_key(
    secrets: Mapping[str, Mapping[str, str]], tag_key: str
) -> dict[str, Mapping[str, str]]:
    """Secrets (id -> tags) that carry ``tag_key``, whatever its value."""
    return {
        secret_id: tags for secret_id, tags in secrets.items() if tag_key in tags
    }


def build_context(cache: "SecretCache", role: str) -> dict[str, Any]:
    """
    Build the rendering context for one resolution.

    Args:
        cache: Secret cache the value helpers read through
        role: IAM role of the resource being resolved
    """

    async def get_secret_value(secret_id: str) -> str:
        entry = await cache.get_entry(secret_id, role)
        return entry.raw.decode("utf-8", errors="replace")

    async def get_secret_value_map(secret_id: str) -> dict[str, str]:
        value = await cache.get_value(secret_id, role)
        if isinstance(value, bytes):
            raise TypeMismatchError(secret_id)
        return dict(value)

    return {
        "Secrets": {d.id: dict(d.tags) for d in cache.list_descriptors()},
        "filterByTagKey": filter_by_tag_key,
        "getSecretValue": get_secret_value,
        "getSecretValueMap": get_secret_value_map,
    }


async def render_template(entry_name: str, body: str, context: dict[str, Any]) -> str:
    """
    Render a template body.

    Raises:
        TemplateError: If the template does not parse or fails to render
        SyncError: Errors raised by the value helpers propagate unchanged
    """
    try:
        template = _environment.from_string(body)
    except TemplateSyntaxError as e:
        raise TemplateError(entry_name, f"line {e.lineno}: {e.message}") from e

    try:
        return await template.render_async(**context)
    except SyncError:
        raise
    except JinjaTemplateError as e:
        raise TemplateError(entry_name, str(e)) from e
    except Exception as e:
        raise TemplateError(entry_name, f"{type(e).__name__}: {e}") from e
