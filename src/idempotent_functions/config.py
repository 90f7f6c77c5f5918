"""Configuration module for idempotent function execution.

This module provides the IdempotencyConfig class controlling how keys are
derived from payloads, how long records live, and whether the local cache is
used. Configuration is always an explicit object handed to the orchestrator;
environment variables are only read when ``from_env`` is called.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.expires_after_seconds
        3600

    Keying on a field of the payload and validating another:

        >>> config = IdempotencyConfig(
        ...     event_key_jmespath="order_id",
        ...     payload_validation_jmespath="[amount, currency]",
        ...     use_local_cache=True,
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_EVENT_KEY_JMESPATH'] = 'parse_json(body).order_id'
        >>> os.environ['IDEMPOTENCY_EXPIRES_AFTER_SECONDS'] = '600'
        >>> config = IdempotencyConfig.from_env()
"""

import hashlib
import os
from typing import Any

import jmespath
from jmespath.exceptions import JMESPathError
from pydantic import BaseModel, Field, field_validator

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class IdempotencyConfig(BaseModel):
    """Configuration for idempotent function execution.

    Attributes:
        event_key_jmespath: JMESPath expression selecting the part of the
            payload that identifies the operation. The whole payload is used
            when unset.
        payload_validation_jmespath: JMESPath expression selecting the part of
            the payload that must match before a stored result is replayed.
            Validation is disabled when unset.
        raise_on_no_idempotency_key: Raise MissingIdempotencyKeyError instead
            of bypassing idempotency when no key can be extracted.
        expires_after_seconds: How long a completed record stays valid.
        use_local_cache: Keep completed records in an in-process LRU cache.
        local_cache_max_items: Capacity of the local cache.
        hash_function: Name of a hashlib algorithm used for keys and
            validation hashes.
        disabled: Bypass idempotency entirely. Meant for local testing.

    Note:
        This class is immutable (frozen=True). Create a new instance if you need
        different settings.
    """

    event_key_jmespath: str | None = Field(
        default=None,
        description="JMESPath expression selecting the idempotency key from the payload",
    )
    payload_validation_jmespath: str | None = Field(
        default=None,
        description="JMESPath expression selecting the payload subset to validate on replay",
    )
    raise_on_no_idempotency_key: bool = Field(
        default=False,
        description="Raise instead of bypassing when no idempotency key is found",
    )
    expires_after_seconds: int = Field(
        default=3600,
        description="Seconds a completed record stays valid (>= 1)",
    )
    use_local_cache: bool = Field(
        default=False,
        description="Cache completed records in process memory",
    )
    local_cache_max_items: int = Field(
        default=256,
        description="Maximum number of records held by the local cache (>= 1)",
    )
    hash_function: str = Field(
        default="md5",
        description="hashlib algorithm used to hash keys and payloads",
    )
    disabled: bool = Field(
        default=False,
        description="Skip idempotency handling and call the function directly",
    )

    model_config = {"frozen": True}

    @field_validator("event_key_jmespath", "payload_validation_jmespath")
    @classmethod
    def validate_jmespath(cls, v: str | None) -> str | None:
        """Validate that an expression compiles.

        Args:
            v: JMESPath expression or None.

        Returns:
            The expression, stripped, or None if empty.

        Raises:
            ValueError: If the expression does not parse.

        Example:
            >>> IdempotencyConfig(event_key_jmespath="[user_id, order_id]").event_key_jmespath
            '[user_id, order_id]'
        """
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        try:
            jmespath.compile(v)
        except JMESPathError as e:
            raise ValueError(f"Invalid JMESPath expression {v!r}: {e}") from e
        return v

    @field_validator("expires_after_seconds")
    @classmethod
    def validate_expires_after_seconds(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"expires_after_seconds must be >= 1, got {v}")
        return v

    @field_validator("local_cache_max_items")
    @classmethod
    def validate_local_cache_max_items(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"local_cache_max_items must be >= 1, got {v}")
        return v

    @field_validator("hash_function")
    @classmethod
    def validate_hash_function(cls, v: str) -> str:
        """Validate the hash algorithm is available in hashlib.

        Variable-length digests (SHAKE) are rejected because keys need a
        fixed-size hex digest.

        Raises:
            ValueError: If hashlib cannot construct the algorithm, or its
                digest has no fixed length.
        """
        name = v.strip().lower()
        unknown = (
            f"Unknown hash_function {v!r}. "
            f"Available: {', '.join(sorted(hashlib.algorithms_guaranteed))}"
        )
        if name not in hashlib.algorithms_available:
            raise ValueError(unknown)
        try:
            digest_size = hashlib.new(name).digest_size
        except ValueError as e:
            # Listed by OpenSSL but not constructible in this build
            raise ValueError(unknown) from e
        if digest_size == 0:
            raise ValueError(f"hash_function {v!r} has a variable-length digest")
        return name

    @property
    def payload_validation_enabled(self) -> bool:
        """Whether replays are checked against a payload validation hash."""
        return self.payload_validation_jmespath is not None

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix, e.g.
        ``IDEMPOTENCY_EXPIRES_AFTER_SECONDS``.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            IdempotencyConfig populated from environment variables, with
            defaults for anything unset.

        Raises:
            ValueError: If a boolean variable holds an unrecognised value.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "event_key_jmespath": str,
            "payload_validation_jmespath": str,
            "raise_on_no_idempotency_key": bool,
            "expires_after_seconds": int,
            "use_local_cache": bool,
            "local_cache_max_items": int,
            "hash_function": str,
            "disabled": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is None:
                continue
            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = _parse_bool(env_var, env_value)
            else:
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")
