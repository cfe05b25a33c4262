"""
Service configuration.

Values come from environment variables (a local .env file is loaded by the
entry point). load_settings() parses them into a validated DispatchSettings.
"""

import os
import math
import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from common.errors import ValidationError


logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = "expertise=0.4,availability=0.25,load=0.2,experience=0.15"


class ScoringWeights(BaseModel):
    """Relative weight of each sub-score. Must sum to 1."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    expertise: float = Field(default=0.4, ge=0.0, le=1.0)
    availability: float = Field(default=0.25, ge=0.0, le=1.0)
    load: float = Field(default=0.2, ge=0.0, le=1.0)
    experience: float = Field(default=0.15, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_sum(self):
        total = self.expertise + self.availability + self.load + self.experience
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"scoring weights must sum to 1, got {total:.6f}")
        return self


class ScoringConfig(BaseModel):
    """Everything the scorer needs besides the worker and the task."""
    model_config = ConfigDict(frozen=True)

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    load_cap: int = Field(default=3, ge=1)
    experience_threshold: float = Field(default=5.0, gt=0.0)


class DispatchSettings(BaseModel):
    redis_url: str = "redis://localhost:6379/0"
    store_backend: Literal["redis", "memory"] = "redis"
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    assign_max_attempts: int = Field(default=5, ge=1)
    store_retry_attempts: int = Field(default=3, ge=0)
    store_retry_backoff: float = Field(default=0.05, ge=0.0)
    seed_demo_data: bool = False
    mlflow_tracking_uri: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8010

    @property
    def mlflow_enabled(self) -> bool:
        return bool(self.mlflow_tracking_uri)


def parse_weights(raw: str) -> ScoringWeights:
    """
    Parse "expertise=0.4,availability=0.25,..." into ScoringWeights.

    Unrecognized options and malformed pairs are rejected.
    """
    values = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            raise ValidationError(f"Malformed weight entry: {part!r}")
        try:
            values[name.strip()] = float(value)
        except ValueError:
            raise ValidationError(f"Weight {name.strip()!r} is not a number: {value!r}")
    try:
        return ScoringWeights(**values)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid scoring weights: {e}")


def _is_truthy(value) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[dict] = None) -> DispatchSettings:
    """
    Build settings from environment variables.

    Args:
        env: Mapping to read from instead of os.environ (used by tests)

    Returns:
        Validated DispatchSettings
    """
    source = os.environ if env is None else env

    def get(name, default=None):
        return source.get(name, default)

    try:
        scoring = ScoringConfig(
            weights=parse_weights(get("DISPATCH_WEIGHTS", DEFAULT_WEIGHTS)),
            load_cap=get("DISPATCH_LOAD_CAP", 3),
            experience_threshold=get("DISPATCH_EXPERIENCE_THRESHOLD", 5.0),
        )
        settings = DispatchSettings(
            redis_url=get("REDIS_URL", "redis://localhost:6379/0"),
            store_backend=get("DISPATCH_STORE_BACKEND", "redis"),
            scoring=scoring,
            assign_max_attempts=get("DISPATCH_ASSIGN_MAX_ATTEMPTS", 5),
            store_retry_attempts=get("DISPATCH_STORE_RETRY_ATTEMPTS", 3),
            store_retry_backoff=get("DISPATCH_STORE_RETRY_BACKOFF", 0.05),
            seed_demo_data=_is_truthy(get("DISPATCH_SEED_DEMO_DATA", "false")),
            mlflow_tracking_uri=get("MLFLOW_TRACKING_URI") or None,
            host=get("DISPATCH_HOST", "0.0.0.0"),
            port=get("DISPATCH_PORT", 8010),
        )
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid configuration: {e}")

    logger.info(
        f"Loaded settings: backend={settings.store_backend}, "
        f"load_cap={settings.scoring.load_cap}, weights={settings.scoring.weights.model_dump()}"
    )
    return settings
