#!/usr/bin/env python3
"""
Configuration validation system for the presentation engine.

This module provides JSON Schema-based validation for the engine
configuration, slide decks and narration transcripts, so malformed input is
reported with a readable path before playback begins.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jsonschema import Draft7Validator, ValidationError

logger = logging.getLogger(__name__)


class ConfigurationValidator:
    """Configuration validator with schema-based validation and helpful error reporting."""

    def __init__(self, schema_dir: Optional[str] = None):
        """
        Initialize the configuration validator.

        Args:
            schema_dir: Directory containing JSON schema files. Defaults to config/schemas/
        """
        if schema_dir is None:
            schema_dir = Path(__file__).parent.parent / "config" / "schemas"

        self.schema_dir = Path(schema_dir)
        self.schemas = {}
        self._load_schemas()

    def _load_schemas(self) -> None:
        """Load all JSON schema files from the schema directory."""
        if not self.schema_dir.exists():
            logger.warning(f"Schema directory not found: {self.schema_dir}")
            return

        for schema_file in self.schema_dir.glob("*.json"):
            schema_name = schema_file.stem
            try:
                with open(schema_file, 'r') as f:
                    schema = json.load(f)
                self.schemas[schema_name] = schema
                logger.debug(f"Loaded schema: {schema_name}")
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Failed to load schema {schema_file}: {e}")

    def validate_config(
        self,
        config: Dict[str, Any],
        schema_name: str
    ) -> Tuple[bool, List[str]]:
        """
        Validate a configuration against a named schema.

        Args:
            config: Configuration dictionary to validate
            schema_name: Name of the schema to validate against

        Returns:
            Tuple of (is_valid, error_messages)
        """
        if schema_name not in self.schemas:
            return False, [f"Schema '{schema_name}' not found"]

        validator = Draft7Validator(self.schemas[schema_name])

        errors = [
            self._format_validation_error(error)
            for error in sorted(validator.iter_errors(config), key=lambda e: list(e.absolute_path))
        ]

        return len(errors) == 0, errors

    def _format_validation_error(self, error: ValidationError) -> str:
        """
        Format a validation error into a human-readable message.

        Args:
            error: ValidationError from jsonschema

        Returns:
            Formatted error message
        """
        path = " -> ".join(str(p) for p in error.absolute_path)
        if path:
            return f"Error at '{path}': {error.message}"
        else:
            return f"Error: {error.message}"

    def validate_file(self, config_path: str, schema_name: str) -> Tuple[bool, List[str]]:
        """
        Validate a configuration file against a named schema.

        Args:
            config_path: Path to configuration file (YAML or JSON)
            schema_name: Name of the schema to validate against

        Returns:
            Tuple of (is_valid, error_messages)
        """
        try:
            config = load_structured_file(config_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            return False, [f"Failed to load config file: {e}"]

        return self.validate_config(config, schema_name)


def load_structured_file(file_path: str) -> Any:
    """
    Load a YAML or JSON document, choosing the parser from the suffix.

    Args:
        file_path: Path to a .yaml, .yml or .json file

    Returns:
        Parsed document

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the suffix is not supported or JSON is malformed
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() in ['.yaml', '.yml']:
            return yaml.safe_load(f)
        elif path.suffix.lower() == '.json':
            return json.load(f)
        else:
            raise ValueError(f"Unsupported file format: {path.suffix}")


def _report(kind: str, is_valid: bool, errors: List[str]) -> bool:
    if not is_valid:
        logger.error(f"{kind} validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    logger.info(f"{kind} validation passed")
    return True


def validate_presentation_config(config_path: str = "config/presentation.yaml") -> bool:
    """
    Validate the engine configuration file.

    Args:
        config_path: Path to presentation configuration file

    Returns:
        True if valid, False otherwise
    """
    validator = ConfigurationValidator()
    is_valid, errors = validator.validate_file(config_path, "presentation")
    if is_valid:
        errors = validate_parameter_ranges(load_structured_file(config_path) or {})
        is_valid = not errors
    return _report("Presentation configuration", is_valid, errors)


def validate_slide_deck(deck_path: str) -> bool:
    """Validate a slide deck file (YAML or JSON); a bare list of slides is accepted."""
    try:
        data = load_structured_file(deck_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        return _report("Slide deck", False, [f"Failed to load slide deck: {e}"])

    if isinstance(data, list):
        data = {"slides": data}
    is_valid, errors = ConfigurationValidator().validate_config(data, "slide_deck")
    return _report("Slide deck", is_valid, errors)


def validate_transcript_document(transcript_path: str) -> bool:
    """Validate a word-timestamped transcript JSON file."""
    validator = ConfigurationValidator()
    is_valid, errors = validator.validate_file(transcript_path, "transcript")
    return _report("Transcript", is_valid, errors)


def validate_parameter_ranges(config: Dict[str, Any]) -> List[str]:
    """
    Validate parameter ranges and logical constraints the schema cannot express.

    Args:
        config: Configuration dictionary

    Returns:
        List of validation error messages
    """
    errors = []

    alignment = config.get('alignment') or {}
    query_words = alignment.get('query_words', 4)
    window_words = alignment.get('window_words', 6)
    if query_words > window_words:
        errors.append("alignment.query_words must not exceed alignment.window_words")

    camera = config.get('camera') or {}
    min_fov = camera.get('min_fov', 10.0)
    max_fov = camera.get('max_fov', 120.0)
    if min_fov >= max_fov:
        errors.append("camera.min_fov must be less than camera.max_fov")

    audio = config.get('audio') or {}
    delay = audio.get('narration_delay', 0.0)
    if isinstance(delay, str) and '${' not in delay:
        try:
            float(delay)
        except ValueError:
            errors.append(f"audio.narration_delay is not a number: {delay!r}")

    return errors


if __name__ == "__main__":
    """Command-line interface for configuration validation."""
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) < 2:
        print("Usage: python config_validation.py <file> [presentation|slide_deck|transcript]")
        sys.exit(1)

    config_file = sys.argv[1]
    schema_name = sys.argv[2] if len(sys.argv) > 2 else "presentation"

    validator = ConfigurationValidator()
    is_valid, errors = validator.validate_file(config_file, schema_name)

    if is_valid:
        print(f"✓ Configuration valid: {config_file}")
        sys.exit(0)
    else:
        print(f"✗ Configuration invalid: {config_file}")
        for error in errors:
            print(f"  - {error}")
        sys.exit(1)
