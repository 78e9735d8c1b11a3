"""Settings validation for rekey."""

from typing import Any, Dict, List

import jsonschema

from .schemas import SETTINGS_SCHEMA


class ConfigValidator:
    """Validates rekey settings files."""

    def validate_settings(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate a settings dictionary.

        Args:
            config: Settings dictionary to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        errors = []

        validator = jsonschema.Draft7Validator(SETTINGS_SCHEMA)
        for error in sorted(validator.iter_errors(config), key=lambda e: list(e.path)):
            location = ".".join(str(part) for part in error.path)
            if location:
                errors.append(f"{location}: {error.message}")
            else:
                errors.append(f"Schema validation failed: {error.message}")

        database = config.get("database") or {}
        superuser = database.get("superuser")
        if superuser and superuser in (database.get("roles") or []):
            errors.append(f"database.roles must not include the superuser '{superuser}'")

        return errors
