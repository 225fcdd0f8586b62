"""Registry for agent prompt definitions.

Loads prompt definitions from src/prompts/definitions/*.yaml. Each file
holds one prompt pair:

    key: reviewer
    description: ...
    system: |
      ...
    user: |
      ... Jinja2 template ...
"""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

DEFINITIONS_DIR = Path(__file__).parent / "definitions"


class PromptDefinition(BaseModel):
    key: str
    description: str = ""
    system: str
    user: str


class PromptRegistry:
    """Loads and serves prompt definitions."""

    def __init__(self, definitions_dir: Optional[Path] = None) -> None:
        self.definitions_dir = definitions_dir or DEFINITIONS_DIR
        self._prompts: dict[str, PromptDefinition] = {}
        self._load_prompts()

    def _load_prompts(self) -> None:
        if not self.definitions_dir.exists():
            logger.warning(f"Prompt definitions directory not found: {self.definitions_dir}")
            return

        for yaml_file in sorted(self.definitions_dir.glob("*.yaml")):
            with open(yaml_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            data.setdefault("key", yaml_file.stem)
            try:
                prompt = PromptDefinition(**data)
            except ValidationError as e:
                logger.error(f"Failed to load prompt {yaml_file.name}: {e}")
                continue
            self._prompts[prompt.key] = prompt
            logger.debug(f"Loaded prompt: {prompt.key}")

        logger.info(f"Loaded {len(self._prompts)} prompt definitions")

    def get(self, key: str) -> PromptDefinition:
        """Get a prompt by key.

        Raises:
            KeyError: If no definition with that key was loaded
        """
        if key not in self._prompts:
            raise KeyError(f"Prompt definition not found: {key}")
        return self._prompts[key]

    def list_keys(self) -> list[str]:
        return sorted(self._prompts)


_registry: Optional[PromptRegistry] = None


def get_prompt_registry() -> PromptRegistry:
    """Get the global PromptRegistry singleton."""
    global _registry
    if _registry is None:
        _registry = PromptRegistry()
    return _registry
