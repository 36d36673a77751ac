"""Configuration models using Pydantic."""

from typing import Any, Dict, List, Literal, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetryPolicy(BaseModel):
    """Retry configuration for a single action."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(
        default=1,
        ge=1,
        le=100,
        description="Total number of attempts, including the first"
    )
    delay: Optional[int] = Field(
        default=None,
        ge=0,
        description="Delay between attempts in milliseconds (engine default if omitted)"
    )
    backoff: Literal["linear", "exponential"] = Field(
        default="linear",
        description="linear keeps the delay constant, exponential doubles it per attempt"
    )


class ActionDescription(BaseModel):
    """Declarative description of one action.

    Accepts the JSON wire format (``onSuccess``/``onError``) as well as the
    Python field names. A single continuation is normalized to a list.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(
        default_factory=lambda: f"action-{uuid4().hex[:12]}",
        description="Identifier used for logging and tracing"
    )
    type: str = Field(
        min_length=1,
        description="Registered action type"
    )
    params: Dict[str, Any] = Field(
        default_factory=dict,
        description="Handler parameters, may contain {{path}} placeholders"
    )
    when: Optional[Union[bool, str]] = Field(
        default=None,
        description="Guard expression; a falsy result skips the action"
    )
    on_success: List["ActionDescription"] = Field(
        default_factory=list,
        alias="onSuccess",
        description="Actions run after success"
    )
    on_error: List["ActionDescription"] = Field(
        default_factory=list,
        alias="onError",
        description="Actions run after failure"
    )
    retry: Optional[RetryPolicy] = Field(
        default=None,
        description="Retry policy"
    )
    timeout: Optional[int] = Field(
        default=None,
        ge=0,
        description="Execution timeout in milliseconds (0 means no timeout)"
    )

    @field_validator("on_success", "on_error", mode="before")
    @classmethod
    def _normalize_continuations(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, (Mapping, ActionDescription)):
            return [value]
        return value

    @classmethod
    def parse(cls, value: Union["ActionDescription", Mapping[str, Any]]) -> "ActionDescription":
        """Return ``value`` if it is already a description, otherwise validate it."""
        if isinstance(value, ActionDescription):
            return value
        return cls.model_validate(value)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize back to the JSON wire format."""
        return self.model_dump(by_alias=True, exclude_none=True)


ActionDescription.model_rebuild()


class EngineSettings(BaseSettings):
    """Global engine configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACTION_ENGINE_",
        case_sensitive=False,
        validate_assignment=True,
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log format (json, plain)"
    )
    enable_logging: bool = Field(
        default=True,
        description="Emit structured lifecycle events for every action"
    )

    # Execution configuration
    default_retry_delay_ms: int = Field(
        default=1000,
        ge=0,
        le=600000,
        description="Retry delay used when a retry policy omits one"
    )
    max_template_depth: int = Field(
        default=64,
        ge=1,
        le=1024,
        description="Maximum nesting depth walked when resolving parameters"
    )

    # Metrics configuration
    metrics_enabled: bool = Field(
        default=False,
        description="Record Prometheus metrics for executed actions"
    )

    # API handler configuration
    api_base_url: Optional[str] = Field(
        default=None,
        description="Base URL prepended to relative apiCall URLs"
    )
    api_timeout: int = Field(
        default=30,
        ge=1,
        le=600,
        description="Default HTTP timeout in seconds for API handlers"
    )
