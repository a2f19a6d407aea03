"""
Prompt loader for versioned, domain-organized YAML templates.

    v1/
    ├── shared/         # Content-safety rules included in every render
    ├── analysis/       # Story-to-scenes analysis instruction
    └── illustration/   # Prompt translation and image instruction

Usage:
    from storybook.prompts.loader import get_prompt, render_prompt

    template = get_prompt("prompt_story_analysis")
    rendered = render_prompt("prompt_story_analysis", story_text="...", min_scenes=7, max_scenes=9)
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).resolve().parent
_VERSION = "v1"

_DOMAIN_DIRS = [
    "shared",
    "analysis",
    "illustration",
]

# Keys from shared/ that render_prompt passes to every template.
_SHARED_KEYS = ["content_safety_rules", "illustration_style"]


@lru_cache(maxsize=1)
def _jinja_env() -> Environment:
    """Create Jinja2 environment for prompt rendering."""
    return Environment(
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )


@lru_cache(maxsize=1)
def _load_prompts() -> dict[str, Any]:
    """Load and syntax-check every YAML prompt file under the current version."""
    prompts: dict[str, Any] = {}
    version_dir = _PROMPTS_DIR / _VERSION

    for domain in _DOMAIN_DIRS:
        domain_dir = version_dir / domain
        if not domain_dir.exists():
            continue

        for yaml_file in sorted(domain_dir.glob("*.yaml")):
            with yaml_file.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            if not isinstance(data, dict):
                raise ValueError(f"{yaml_file} must be a mapping at top level")

            for key, value in data.items():
                template = value.get("template") if isinstance(value, dict) else value
                if isinstance(template, str):
                    try:
                        _jinja_env().parse(template)
                    except Exception as e:  # TemplateSyntaxError or others
                        raise ValueError(f"Invalid Jinja2 template in {yaml_file}:{key}: {e}") from e

            prompts.update(data)

    return prompts


def get_prompt(name: str) -> str:
    """
    Get a prompt template by name.

    Supports two prompt shapes in YAML files:
    - String value: { name: "template string" }
    - Mapping value: { name: { template: "...", required_variables: [...] } }

    Raises:
        KeyError: If prompt not found or not a string
    """
    value = _load_prompts().get(name)
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and "template" in value:
        return value["template"]
    raise KeyError(f"Prompt '{name}' not found or not a string")


def extract_template_variables(template: str) -> set[str]:
    """Extract base variable names referenced by ``{{ }}`` and ``{% if/for %}`` blocks."""
    variables = set()
    for match in re.finditer(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_]*)", template):
        variables.add(match.group(1))
    for match in re.finditer(r"\{%\s*(?:if|for|elif)\s+([a-zA-Z_][a-zA-Z0-9_]*)", template):
        variables.add(match.group(1))
    return variables


def check_required_variables(name: str, context: dict[str, Any]) -> list[str]:
    """Return the required variables of prompt ``name`` missing from ``context``."""
    value = _load_prompts().get(name)
    if isinstance(value, dict) and value.get("required_variables"):
        required = list(value["required_variables"])
    else:
        required = sorted(extract_template_variables(get_prompt(name)) - set(_SHARED_KEYS))
    return [v for v in required if v not in context]


def render_prompt(name: str, validate: bool = True, **context: Any) -> str:
    """
    Render a prompt template with the given context.

    Shared prompts are automatically included in the context if not explicitly provided.

    Raises:
        ValueError: If validate=True and required variables are missing
    """
    prompts = _load_prompts()
    for shared_key in _SHARED_KEYS:
        if shared_key not in context and shared_key in prompts:
            context[shared_key] = get_prompt(shared_key).strip()

    if validate:
        missing = check_required_variables(name, context)
        if missing:
            raise ValueError(f"Missing required variables for '{name}': {missing}")

    template = get_prompt(name)
    return _jinja_env().from_string(template).render(**context).strip()


def list_prompts() -> list[str]:
    return list(_load_prompts().keys())


def clear_cache() -> None:
    """Clear all cached prompts (useful for hot-reload scenarios)."""
    _load_prompts.cache_clear()
    _jinja_env.cache_clear()
