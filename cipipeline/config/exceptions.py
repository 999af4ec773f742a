"""Exceptions raised while loading pipeline definitions and settings."""

from pathlib import Path
from typing import List, Optional


class ConfigurationError(Exception):
    """
    A pipeline definition or the process environment is invalid.

    Carries the individual problems, a few hints and, for definition
    problems, the YAML file they were found in. Renders all of it as one
    block so the CLI can print the exception as-is.
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
        definition_path: Optional[Path] = None,
    ):
        """
        Args:
            message: Primary error message
            errors: Individual validation problems
            suggestions: Hints for fixing them
            definition_path: Pipeline definition file at fault, if any;
                None for environment and credential problems
        """
        self.message = message
        self.errors = errors or []
        self.suggestions = suggestions or []
        self.definition_path = Path(definition_path) if definition_path is not None else None
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]

        if self.definition_path is not None:
            parts.append(f"Definition: {self.definition_path}")

        if self.errors:
            parts.append("\nValidation Errors:")
            for i, error in enumerate(self.errors, 1):
                parts.append(f"  {i}. {error}")

        if self.suggestions:
            parts.append("\nSuggestions:")
            for suggestion in self.suggestions:
                parts.append(f"  - {suggestion}")

        return "\n".join(parts)
