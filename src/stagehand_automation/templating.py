from __future__ import annotations

import re
from typing import Any, Mapping

import jinja2
from jinja2.nativetypes import NativeEnvironment

from .errors import ConfigError

_native_env = NativeEnvironment(undefined=jinja2.StrictUndefined)
_text_env = jinja2.Environment(undefined=jinja2.StrictUndefined, autoescape=False, keep_trailing_newline=True)

# Exactly one "{{ ... }}" and nothing around it.
_LONE_EXPRESSION = re.compile(r"\{\{(?:(?!\}\}).)*\}\}", re.S)


def looks_like_template(text: str) -> bool:
    return bool(re.search(r"{[{%]", text))


def render_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Render every string inside ``value``, keeping native types for lone expressions."""

    if isinstance(value, str):
        if not looks_like_template(value):
            return value
        try:
            env = _native_env if _LONE_EXPRESSION.fullmatch(value) else _text_env
            rendered = env.from_string(value).render(**context)
        except jinja2.UndefinedError as exc:
            raise ConfigError(f"undefined variable in '{value}': {exc.message}") from None
        except jinja2.TemplateSyntaxError as exc:
            raise ConfigError(f"invalid template '{value}': {exc.message}") from None
        # A lone undefined expression comes back as the Undefined object itself.
        if isinstance(rendered, jinja2.Undefined):
            raise ConfigError(f"undefined variable in '{value}'")
        return rendered
    if isinstance(value, dict):
        return {k: render_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render_value(v, context) for v in value]
    return value


def render_text(template_text: str, context: Mapping[str, Any]) -> str:
    try:
        return _text_env.from_string(template_text).render(**context)
    except jinja2.UndefinedError as exc:
        raise ConfigError(f"undefined variable in template: {exc.message}") from None
    except jinja2.TemplateSyntaxError as exc:
        raise ConfigError(f"invalid template at line {exc.lineno}: {exc.message}") from None


def evaluate_guard(expression: Any, context: Mapping[str, Any]) -> bool:
    """Evaluate a ``when`` guard; lists must all hold."""

    if expression is None:
        return True
    if isinstance(expression, bool):
        return expression
    if isinstance(expression, list):
        return all(evaluate_guard(item, context) for item in expression)
    text = str(expression).strip()
    if looks_like_template(text):
        # Accept "{{ expr }}" as well as a bare expression.
        text = text.strip("{} ")
    try:
        compiled = _text_env.compile_expression(text, undefined_to_none=False)
        return bool(compiled(**context))
    except jinja2.UndefinedError as exc:
        raise ConfigError(f"undefined variable in guard '{expression}': {exc.message}") from None
    except jinja2.TemplateSyntaxError as exc:
        raise ConfigError(f"invalid guard '{expression}': {exc.message}") from None
