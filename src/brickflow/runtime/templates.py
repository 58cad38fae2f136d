"""Template rendering for the two template dialects.

``mustache`` is rendered with :mod:`pystache` and ``nunjucks`` with a
sandboxed :mod:`jinja2` environment. Both render against the execution
context, whose reserved keys start with ``@``. Jinja identifiers cannot
contain ``@``, so ``@name`` references inside Jinja tags are rewritten to
``at__name`` and the context is aliased to match.
"""

from __future__ import annotations

import html
import logging
import re
from functools import lru_cache
from typing import Any

import pystache
from jinja2 import ChainableUndefined
from jinja2.sandbox import SandboxedEnvironment

from brickflow.errors import TemplateRenderError

logger = logging.getLogger(__name__)

MUSTACHE = "mustache"
NUNJUCKS = "nunjucks"

_AT_ALIAS_PREFIX = "at__"
_STRING = r"""(?:"(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')"""
_JINJA_TAG_RE = re.compile(
    r"\{\{(?:" + _STRING + r"|.)*?\}\}|\{%(?:" + _STRING + r"|.)*?%\}", re.DOTALL
)
# String literals are matched first so an @ inside quotes is left alone
_AT_NAME_RE = re.compile("(" + _STRING + r")|(?<![\w.])@(?=[A-Za-z_])")


def _escape_html(value: str) -> str:
    return html.escape(value, quote=True)


def _no_escape(value: str) -> str:
    return value


def render_mustache(template: str, context: dict[str, Any], *, autoescape: bool = True) -> str:
    """Render a mustache *template* against *context*."""
    renderer = pystache.Renderer(
        escape=_escape_html if autoescape else _no_escape,
        missing_tags="ignore",
    )
    return renderer.render(template, context)


@lru_cache(maxsize=2)
def _jinja_environment(autoescape: bool) -> SandboxedEnvironment:
    return SandboxedEnvironment(autoescape=autoescape, undefined=ChainableUndefined)


def _alias_at_name(match: re.Match[str]) -> str:
    literal = match.group(1)
    return _AT_ALIAS_PREFIX if literal is None else literal


def _rewrite_at_names(template: str) -> str:
    return _JINJA_TAG_RE.sub(
        lambda m: _AT_NAME_RE.sub(_alias_at_name, m.group(0)), template
    )


def _alias_context(context: dict[str, Any]) -> dict[str, Any]:
    aliased = dict(context)
    for key, value in context.items():
        if isinstance(key, str) and key.startswith("@"):
            aliased[_AT_ALIAS_PREFIX + key[1:]] = value
    return aliased


def render_nunjucks(template: str, context: dict[str, Any], *, autoescape: bool = True) -> str:
    """Render a nunjucks-style *template* against *context* with Jinja."""
    env = _jinja_environment(autoescape)
    compiled = env.from_string(_rewrite_at_names(template))
    return compiled.render(_alias_context(context))


_RENDERERS = {
    MUSTACHE: render_mustache,
    NUNJUCKS: render_nunjucks,
}


def render_template(
    engine: str,
    template: str,
    context: dict[str, Any],
    *,
    autoescape: bool = True,
) -> str:
    """Render *template* with *engine* against *context*.

    Raises:
        TemplateRenderError: If the engine is unknown or rendering fails.
    """
    renderer = _RENDERERS.get(engine)
    if renderer is None:
        raise TemplateRenderError(
            f"Unsupported template engine: {engine}", engine=engine, template=template
        )
    try:
        return renderer(template, context, autoescape=autoescape)
    except Exception as exc:
        logger.debug("Error rendering %s template %r: %s", engine, template, exc)
        raise TemplateRenderError(
            f"Error rendering {engine} template: {exc}",
            engine=engine,
            template=template,
        ) from exc
