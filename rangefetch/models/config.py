"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import hashlib
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_REQUEST_SIZE = 64 * 1024  # 64 KB


class FetchConfig(BaseModel):
    """A validated configuration model for one download session."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Endpoint
    base_url: str = "http://127.0.0.1:8080"
    resource_path: str = "/"

    # Retry policy
    max_attempts: int = 5  # Per span, before it counts as stalled
    attempt_budget: int = 1000  # Across all spans in the session
    base_delay: float = 0.25
    max_delay: float = 8.0

    # Request shaping
    max_request_size: int = DEFAULT_REQUEST_SIZE
    request_timeout: float = 30.0
    deadline: float | None = None  # Seconds for the whole session

    # Verification
    digest_algorithm: str = "sha256"

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Requires an absolute http(s) URL and strips any trailing slash."""
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Base URL must be an absolute http(s) URL, got: {v!r}")
        return v.rstrip("/")

    @field_validator("resource_path")
    @classmethod
    def validate_resource_path(cls, v: str) -> str:
        if not v:
            return "/"
        return v if v.startswith("/") else f"/{v}"

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1 or v > 100:
            raise ValueError("Max attempts must be between 1 and 100.")
        return v

    @field_validator("attempt_budget", "max_request_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be a positive integer.")
        return v

    @field_validator("base_delay", "max_delay", "request_timeout")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays and timeouts cannot be negative.")
        return v

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("Deadline must be a positive number of seconds.")
        return v

    @field_validator("digest_algorithm")
    @classmethod
    def validate_digest_algorithm(cls, v: str) -> str:
        name = v.lower()
        if name not in hashlib.algorithms_available:
            raise ValueError(f"Unknown digest algorithm: {v!r}")
        return name

    @model_validator(mode="after")
    def validate_retry_policy(self) -> "FetchConfig":
        """Checks that the retry settings can be satisfied together."""
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay cannot be greater than max_delay.")
        if self.attempt_budget < self.max_attempts:
            raise ValueError("attempt_budget must be at least max_attempts.")
        return self

    @property
    def url(self) -> str:
        """The full URL of the blob resource."""
        return self.base_url + self.resource_path

    def backoff_delay(self, failures: int) -> float:
        """Exponential backoff for the given count of consecutive failures."""
        if failures < 1:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** (failures - 1)))

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
