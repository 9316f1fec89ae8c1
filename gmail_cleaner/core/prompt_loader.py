"""
YAML-based prompt loader with variable substitution.

Features:
- Prompts live in gmail_cleaner/core/ai/prompts/classifier.yaml
- PROMPTS_DIR overlay support (a classifier.yaml there replaces the default)
- Variable substitution with {variable_name} syntax
- Caching for performance

Usage:
    from gmail_cleaner.core.prompt_loader import get_prompt

    prompt = get_prompt("classifier.system_prompt", categories="Work, Bills")
"""
import os
import re
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PROMPTS_FILENAME = "classifier.yaml"
_DEFAULT_PROMPTS_DIR = Path(__file__).parent / "ai" / "prompts"

# Cache for loaded prompts
_prompts_cache: Optional[Dict[str, Any]] = None
_prompts_cache_path: Optional[Path] = None


def get_prompts_path() -> Path:
    """
    Resolve the prompts file.

    Resolution order:
    1. PROMPTS_DIR/classifier.yaml (overlay)
    2. Packaged default
    """
    overlay_dir = os.getenv("PROMPTS_DIR")
    if overlay_dir:
        overlay_path = Path(overlay_dir) / PROMPTS_FILENAME
        if overlay_path.exists():
            return overlay_path
        logger.debug(f"No {PROMPTS_FILENAME} in PROMPTS_DIR={overlay_dir}, using default")
    return _DEFAULT_PROMPTS_DIR / PROMPTS_FILENAME


def _load_prompts_yaml(force_reload: bool = False) -> Dict[str, Any]:
    """Load the prompts file with caching."""
    global _prompts_cache, _prompts_cache_path

    prompts_path = get_prompts_path()

    # Return cached if same path and not forcing reload
    if not force_reload and _prompts_cache is not None and _prompts_cache_path == prompts_path:
        return _prompts_cache

    if not prompts_path.exists():
        logger.warning(f"{prompts_path} not found, using empty config")
        return {"variables": {}, "prompts": {}}

    logger.info(f"Loading prompts from: {prompts_path}")

    with open(prompts_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    _prompts_cache = data
    _prompts_cache_path = prompts_path

    return data


def get_prompt_variables() -> Dict[str, Any]:
    """Variables section of the prompts file (name -> value)."""
    data = _load_prompts_yaml()
    return dict(data.get("variables") or {})


def _substitute_variables(template: str, variables: Dict[str, Any]) -> str:
    """
    Substitute {variable_name} placeholders in template.

    Unmatched placeholders and JSON braces are left as-is.
    """
    def replace(match):
        key = match.group(1)
        if key in variables:
            return str(variables[key])
        return match.group(0)

    pattern = r'\{([a-zA-Z_][a-zA-Z0-9_]*)\}'
    return re.sub(pattern, replace, template)


def get_prompt(key: str, default: str = "", **runtime_vars) -> str:
    """
    Get a prompt by dotted key path with variable substitution.

    Args:
        key: Dotted path to prompt (e.g., "classifier.system_prompt")
        default: Returned (after substitution) if the key is not found
        **runtime_vars: Variables for substitution; override the file's variables

    Returns:
        Formatted prompt string
    """
    data = _load_prompts_yaml()

    value: Any = data.get("prompts", {})
    for part in key.split("."):
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = None
            break

    if value is None:
        if not default:
            logger.warning(f"Prompt key not found: {key}")
        value = default

    if not isinstance(value, str):
        logger.warning(f"Prompt key {key} is not a string: {type(value)}")
        value = str(value)

    variables = get_prompt_variables()
    variables.update(runtime_vars)

    return _substitute_variables(value, variables)


def reload_prompts() -> None:
    """Force reload of prompts from disk."""
    global _prompts_cache, _prompts_cache_path
    _prompts_cache = None
    _prompts_cache_path = None
    _load_prompts_yaml(force_reload=True)
    logger.info("Prompts reloaded")
