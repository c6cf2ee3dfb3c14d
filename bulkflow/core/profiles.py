"""Profile-based connection and bulk configuration.

Profiles live in ``<profile_dir>/<environment>.yml``::

    version: "1.0"
    variables:
      db_path: ${BULK_DB_PATH|/tmp/bulk.db}
    connections:
      warehouse:
        url: sqlite:///${db_path}
        options:
          echo: false
    bulk:
      batch_size: 5000
      staging_lifetime: session
"""

import copy
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from bulkflow.core.settings import BulkSettings
from bulkflow.core.variables import substitute_variables
from bulkflow.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_VERSION = "1.0"


@dataclass
class ConnectionProfile:
    """A named connection from a profile."""

    name: str
    url: str
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, config: Dict[str, Any]) -> "ConnectionProfile":
        """Create ConnectionProfile from dictionary configuration.

        Raises:
            ValueError: If required fields are missing
        """
        if not isinstance(config, dict):
            raise ValueError(f"Connection '{name}' configuration must be a dictionary")

        url = config.get("url")
        if not url:
            raise ValueError(f"Connection '{name}' missing required 'url' field")

        options = config.get("options", {}) or {}
        if not isinstance(options, dict):
            raise ValueError(f"Connection '{name}' options must be a dictionary")

        return cls(name=name, url=str(url), options=options)


@dataclass
class ValidationResult:
    """Result of profile validation."""

    is_valid: bool
    errors: List[str]
    warnings: List[str]

    def __bool__(self) -> bool:
        return self.is_valid


class ProfileManager:
    """Profile loading with caching, validation and variable substitution."""

    def __init__(self, profile_dir: str, environment: str = "dev"):
        self.profile_dir = profile_dir
        self.environment = environment
        self._profile_cache: Dict[str, Dict[str, Any]] = {}
        self._cache_timestamps: Dict[str, float] = {}

        logger.debug(
            f"Initialized ProfileManager for environment '{environment}' in '{profile_dir}'"
        )

    def profile_path(self, environment: Optional[str] = None) -> str:
        return os.path.join(self.profile_dir, f"{environment or self.environment}.yml")

    def load_profile(self, environment: Optional[str] = None) -> Dict[str, Any]:
        """Load environment-specific profile with caching.

        Raises:
            FileNotFoundError: If profile file doesn't exist
            ValueError: If profile YAML is invalid
        """
        profile_path = self.profile_path(environment)

        if self._is_cache_valid(profile_path):
            logger.debug(f"Using cached profile '{profile_path}'")
            return self._profile_cache[profile_path]

        if not os.path.exists(profile_path):
            raise FileNotFoundError(f"Profile file not found: {profile_path}")

        try:
            with open(profile_path, "r", encoding="utf-8") as f:
                profile_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in profile '{profile_path}': {e}") from e

        if profile_data is None:
            profile_data = {}

        validation_result = self.validate_profile(profile_path, profile_data)
        if not validation_result.is_valid:
            raise ValueError(
                f"Profile validation failed for '{profile_path}':\n"
                + "\n".join(f"  - {error}" for error in validation_result.errors)
            )
        for warning in validation_result.warnings:
            logger.warning(f"Profile '{profile_path}': {warning}")

        profile_data = self._apply_variable_substitution(profile_data)

        self._profile_cache[profile_path] = profile_data
        self._cache_timestamps[profile_path] = time.time()
        return profile_data

    def _apply_variable_substitution(self, profile_data: Dict[str, Any]) -> Dict[str, Any]:
        """Substitute environment variables into ``variables``, then the profile."""
        substituted = copy.deepcopy(profile_data)
        variables = substitute_variables(
            substituted.get("variables", {}) or {}, dict(os.environ)
        )
        # Profile variables may refer to each other
        for _ in range(10):
            resolved = substitute_variables(variables, {**os.environ, **variables})
            if resolved == variables:
                break
            variables = resolved
        substituted["variables"] = variables
        return substitute_variables(substituted, {**os.environ, **variables})

    def get_connection(
        self, name: str, environment: Optional[str] = None
    ) -> ConnectionProfile:
        """Get a named connection from the profile.

        Raises:
            ValueError: If the connection is not defined
        """
        profile = self.load_profile(environment)
        connections = profile.get("connections", {}) or {}
        if name not in connections:
            raise ValueError(
                f"Connection '{name}' not found in profile. "
                f"Available connections: {list(connections.keys())}"
            )
        return ConnectionProfile.from_dict(name, connections[name])

    def list_connections(self, environment: Optional[str] = None) -> List[str]:
        try:
            profile = self.load_profile(environment)
        except (FileNotFoundError, ValueError):
            return []
        return list((profile.get("connections") or {}).keys())

    def get_bulk_settings(self, environment: Optional[str] = None) -> BulkSettings:
        """Bulk defaults from the profile, overlaid with ``BULKFLOW_*`` env vars."""
        profile = self.load_profile(environment)
        base = BulkSettings.from_dict(profile.get("bulk", {}) or {})
        return BulkSettings.from_env(base=base)

    def validate_profile(
        self, profile_path: str, profile_data: Optional[Dict[str, Any]] = None
    ) -> ValidationResult:
        """Validate profile YAML structure and required fields."""
        if profile_data is None:
            try:
                with open(profile_path, "r", encoding="utf-8") as f:
                    profile_data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                return ValidationResult(False, [f"Failed to load profile: {e}"], [])

        errors: List[str] = []
        warnings: List[str] = []

        if not isinstance(profile_data, dict):
            return ValidationResult(False, ["Profile must be a YAML dictionary"], [])

        version = profile_data.get("version")
        if version is not None and str(version) != SUPPORTED_VERSION:
            warnings.append(
                f"Unknown profile version '{version}', expected '{SUPPORTED_VERSION}'"
            )

        if "variables" in profile_data and not isinstance(
            profile_data["variables"], dict
        ):
            errors.append("'variables' section must be a dictionary")

        connections = profile_data.get("connections")
        if connections is not None:
            if not isinstance(connections, dict):
                errors.append("'connections' section must be a dictionary")
            else:
                for name, config in connections.items():
                    try:
                        ConnectionProfile.from_dict(name, config)
                    except ValueError as e:
                        errors.append(str(e))

        bulk = profile_data.get("bulk")
        if bulk is not None:
            if not isinstance(bulk, dict):
                errors.append("'bulk' section must be a dictionary")
            else:
                unknown = set(bulk) - set(BulkSettings.__dataclass_fields__)
                if unknown:
                    errors.append(f"Unknown keys in 'bulk' section: {sorted(unknown)}")

        return ValidationResult(not errors, errors, warnings)

    def _is_cache_valid(self, profile_path: str) -> bool:
        if profile_path not in self._profile_cache:
            return False
        try:
            return os.path.getmtime(profile_path) <= self._cache_timestamps[profile_path]
        except OSError:
            return False

    def clear_cache(self) -> None:
        self._profile_cache.clear()
        self._cache_timestamps.clear()
        logger.debug("Profile cache cleared")
