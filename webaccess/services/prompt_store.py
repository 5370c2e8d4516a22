"""Prompt catalog for the agent and the operation classifier.

Prompts live in ``prompts/prompts.json`` grouped by component; long prompts
are stored as a list of lines. Every prompt the pipeline renders is declared
in ``REQUIRED_PROMPTS`` together with its placeholders, and the catalog is
checked against that table when it is loaded.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

from loguru import logger

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

# prompt key -> placeholders its template takes
REQUIRED_PROMPTS: dict[str, frozenset[str]] = {
    "agent.system_prompt": frozenset({"tools"}),
    "agent.forced_system_prompt": frozenset(),
    "agent.forced_instructions": frozenset(),
    "operation.classifier_system_prompt": frozenset(),
}


class PromptCatalogError(ValueError):
    """Malformed catalog, or a prompt the pipeline renders is missing or has the wrong placeholders."""


def _flatten(node: dict[str, Any], prefix: str = "") -> dict[str, str]:
    entries: dict[str, str] = {}
    for name, value in node.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            entries.update(_flatten(value, f"{key}."))
        elif isinstance(value, str):
            entries[key] = value
        elif isinstance(value, list) and all(isinstance(line, str) for line in value):
            entries[key] = "\n".join(value)
        else:
            raise PromptCatalogError(f"Prompt '{key}' must be a string or a list of lines")
    return entries


def placeholders(template: str) -> frozenset[str]:
    compiled = Template(template)
    names = set()
    for match in compiled.pattern.finditer(compiled.template):
        name = match.group("named") or match.group("braced")
        if name:
            names.add(name)
    return frozenset(names)


def validate_catalog(entries: dict[str, str]) -> None:
    for key, expected in REQUIRED_PROMPTS.items():
        if key not in entries:
            raise PromptCatalogError(f"Prompt catalog is missing '{key}'")
        found = placeholders(entries[key])
        if found != expected:
            raise PromptCatalogError(
                f"Prompt '{key}' takes {sorted(expected)} but the catalog template uses {sorted(found)}"
            )


@lru_cache(maxsize=4)
def load_catalog(path: Path = PROMPTS_PATH) -> dict[str, str]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise PromptCatalogError("Prompt catalog must be a JSON object")
    entries = _flatten(payload)
    validate_catalog(entries)
    logger.debug(f"Loaded {len(entries)} prompts from {path.name}")
    return entries


def render_prompt(key: str, **values: Any) -> str:
    entries = load_catalog()
    if key not in entries:
        raise KeyError(f"Prompt key not found: {key}")
    try:
        return Template(entries[key]).substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def clear_prompt_cache() -> None:
    load_catalog.cache_clear()
