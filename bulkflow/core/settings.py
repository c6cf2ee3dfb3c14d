"""Defaults applied to bulk requests.

Settings come from code, from ``BULKFLOW_*`` environment variables, or from
the ``bulk`` section of a profile. Options passed on a request always win.
"""

import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from bulkflow.core.models import (
    AmbiguityPolicy,
    IdentityBehavior,
    MergeCommandType,
    StagingLifetime,
)

ENV_PREFIX = "BULKFLOW_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BulkSettings:
    """Defaults for bulk operations.

    Attributes:
        batch_size: Rows per load batch; None means provider default
        staging_lifetime: Default staging placement
        staging_prefix: Prefix of generated staging table names
        ambiguity_policy: Behaviour when qualifiers match several target rows
        keep_staging_on_failure: Keep physical staging tables after failure
        identity_behavior: Whether identity values are written
        merge_command_type: Statement family used for merge
    """

    batch_size: Optional[int] = None
    staging_lifetime: StagingLifetime = StagingLifetime.SESSION_SCOPED
    staging_prefix: str = "_bulkflow"
    ambiguity_policy: AmbiguityPolicy = AmbiguityPolicy.AFFECT_ALL
    keep_staging_on_failure: bool = False
    identity_behavior: IdentityBehavior = IdentityBehavior.DEFAULT
    merge_command_type: MergeCommandType = MergeCommandType.UPDATE_THEN_INSERT

    def __post_init__(self):
        if self.batch_size is not None and self.batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        if not self.staging_prefix or not self.staging_prefix.replace("_", "").isalnum():
            raise ValueError(
                f"staging_prefix must be alphanumeric/underscore: {self.staging_prefix!r}"
            )

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> "BulkSettings":
        """Build settings from a mapping such as a profile's ``bulk`` section.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = set(cls.__dataclass_fields__)
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown bulk settings: {sorted(unknown)}")

        values: Dict[str, Any] = {}
        for key, raw in config.items():
            values[key] = _coerce(key, raw)
        return cls(**values)

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, base: Optional["BulkSettings"] = None
    ) -> "BulkSettings":
        """Overlay ``BULKFLOW_<SETTING>`` environment variables on ``base``."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for key in cls.__dataclass_fields__:
            env_key = f"{ENV_PREFIX}{key.upper()}"
            if env_key in environ:
                overrides[key] = _coerce(key, environ[env_key])
        return replace(base or cls(), **overrides)

    def merged_with(self, config: Mapping[str, Any]) -> "BulkSettings":
        values = {key: _coerce(key, raw) for key, raw in config.items()}
        return replace(self, **values)


def _coerce(key: str, raw: Any) -> Any:
    if key == "batch_size":
        return None if raw in (None, "", "none") else int(raw)
    if key == "keep_staging_on_failure":
        return raw if isinstance(raw, bool) else str(raw).strip().lower() in _TRUE_VALUES
    if key == "staging_prefix":
        return str(raw)
    enum_type = {
        "staging_lifetime": StagingLifetime,
        "ambiguity_policy": AmbiguityPolicy,
        "identity_behavior": IdentityBehavior,
        "merge_command_type": MergeCommandType,
    }.get(key)
    if enum_type is None:
        raise ValueError(f"Unknown bulk setting: {key}")
    if isinstance(raw, enum_type):
        return raw
    try:
        return enum_type(str(raw).strip().lower())
    except ValueError:
        valid = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Invalid value {raw!r} for {key}; expected one of: {valid}") from None
