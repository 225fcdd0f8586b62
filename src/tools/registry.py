"""Typed tool table for the agents.

Each tool is declared once as a ToolSpec: name, description, pydantic input
model, handler and side-effect class. The same table produces the
declarations advertised to the model and dispatches the calls the model
makes, so a name the model can see is always a name that can run.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from pydantic import BaseModel

from src.errors import UnknownTool
from src.llm.backends import ToolDeclaration

logger = logging.getLogger(__name__)


class SideEffect(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_model: type[BaseModel]
    handler: Optional[Callable[[Any], Any]]
    side_effect: SideEffect = SideEffect.READ

    def declaration(self) -> ToolDeclaration:
        schema = self.input_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        return ToolDeclaration(name=self.name, description=self.description, parameters=schema)


class ToolRegistry:
    """Name -> ToolSpec table with validation and dispatch."""

    def __init__(self, specs: Iterable[ToolSpec] = ()):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> ToolSpec:
        """Look up an executable tool.

        Raises:
            UnknownTool: If the name is not registered or has no handler
        """
        spec = self._specs.get(name)
        if spec is None or spec.handler is None:
            raise UnknownTool(name)
        return spec

    @property
    def names(self) -> list[str]:
        return list(self._specs)

    def read_only_names(self) -> list[str]:
        return [name for name, spec in self._specs.items() if spec.side_effect == SideEffect.READ]

    def declarations(self, names: Optional[Iterable[str]] = None) -> list[ToolDeclaration]:
        """Declarations for the given tools (all when names is None)."""
        selected = self.names if names is None else list(names)
        return [self.get(name).declaration() for name in selected]

    def dispatch(self, name: str, arguments: dict[str, Any]) -> Any:
        """Validate arguments against the tool's input model and run it.

        Raises:
            UnknownTool: If the name is not executable
            pydantic.ValidationError: If the arguments do not match the input model
        """
        spec = self.get(name)
        payload = spec.input_model.model_validate(arguments or {})
        return spec.handler(payload)
