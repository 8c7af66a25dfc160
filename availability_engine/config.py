"""
Configuration management using Pydantic models loaded from YAML.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import InvalidTimeZone, InvalidWindow
from .domain.models import SchedulingPolicy
from .domain.resources import PolicyTable, ResourceProfile
from .domain.timezones import resolve_timezone

CONFIG_ENV_VAR = "AVAILABILITY_ENGINE_CONFIG"


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        return resolve_timezone(value)
    except InvalidTimeZone as exc:
        raise ValueError(exc.message) from exc


def _check_weekdays(value: List[int]) -> List[int]:
    invalid_days = [day for day in value if day not in range(7)]
    if invalid_days:
        raise ValueError(f"weekend_days must be between 0 and 6, got {invalid_days}")
    # Preserve order while removing duplicates
    return list(dict.fromkeys(value))


class PolicyDefaults(BaseModel):
    """System-wide scheduling defaults."""
    operating_start_hour: int = 8
    operating_end_hour: int = 18
    allow_weekends: bool = False
    weekend_days: List[int] = Field(default_factory=lambda: [5, 6])  # Saturday, Sunday
    alignment_minutes: int = 30
    required_free_minutes: int = 30

    @field_validator("operating_start_hour", "operating_end_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        """Validate hour is between 0 and 24."""
        if not 0 <= v <= 24:
            raise ValueError(f"Hour must be between 0 and 24, got {v}")
        return v

    @field_validator("alignment_minutes", "required_free_minutes")
    @classmethod
    def validate_minutes(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("minutes must be greater than zero")
        return value

    @field_validator("weekend_days")
    @classmethod
    def validate_weekend_days(cls, value: List[int]) -> List[int]:
        return _check_weekdays(value)

    @model_validator(mode="after")
    def validate_hours_order(self) -> "PolicyDefaults":
        """Ensure the operating window opens before it closes."""
        if self.operating_end_hour <= self.operating_start_hour:
            raise ValueError("operating_end_hour must be later than operating_start_hour")
        return self


class PolicyOverrides(BaseModel):
    """Per-resource policy fields; only the ones given replace the defaults."""
    operating_start_hour: Optional[int] = None
    operating_end_hour: Optional[int] = None
    allow_weekends: Optional[bool] = None
    weekend_days: Optional[List[int]] = None
    alignment_minutes: Optional[int] = None
    required_free_minutes: Optional[int] = None

    @field_validator("weekend_days")
    @classmethod
    def validate_weekend_days(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        return value if value is None else _check_weekdays(value)


class SearchDefaults(BaseModel):
    """Defaults for availability scans."""
    days_to_check: int = 7
    max_slots: int = 4
    max_concurrent_fetches: int = 4
    upstream_timeout_seconds: float = 30.0

    @field_validator("days_to_check", "max_slots", "max_concurrent_fetches")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("value must be greater than zero")
        return value

    @field_validator("upstream_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("upstream_timeout_seconds must be greater than zero")
        return value


class Resource(BaseModel):
    """Bookable resource (clinician calendar) configuration."""
    id: str
    name: str = ""  # Used as alias
    calendar_id: str = ""
    timezone: Optional[str] = None
    policy: PolicyOverrides = Field(default_factory=PolicyOverrides)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: Optional[str]) -> Optional[str]:
        return _check_timezone(value)


class GoogleSettings(BaseModel):
    """Google Calendar backend settings; the token itself comes from the environment."""
    access_token_env: str = "GOOGLE_CALENDAR_TOKEN"
    base_url: str = "https://www.googleapis.com/calendar/v3"


class GraphSettings(BaseModel):
    """Microsoft Graph backend settings."""
    client_id: str = ""
    tenant_id: str = "common"

    def get_authority_url(self) -> str:
        """Get the formatted authority URL."""
        return f"https://login.microsoftonline.com/{self.tenant_id}"


class MockSettings(BaseModel):
    data_file: Optional[Path] = None


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "America/New_York"
    backend: Literal["google", "graph", "mock"] = "google"
    defaults: PolicyDefaults = Field(default_factory=PolicyDefaults)
    search: SearchDefaults = Field(default_factory=SearchDefaults)
    resources: List[Resource] = Field(default_factory=list)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    mock: MockSettings = Field(default_factory=MockSettings)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _check_timezone(value)

    @field_validator("resources")
    @classmethod
    def validate_resources(cls, value: List[Resource]) -> List[Resource]:
        """Ensure resource ids and names are unique."""
        seen_ids: set[str] = set()
        seen_names: set[str] = set()
        for resource in value:
            name_key = resource.name.lower()
            if resource.id in seen_ids:
                raise ValueError(f"Duplicate resource id detected: {resource.id}")
            if name_key and name_key in seen_names:
                raise ValueError(f"Duplicate resource name detected: {resource.name}")
            seen_ids.add(resource.id)
            if name_key:
                seen_names.add(name_key)
        return value

    @model_validator(mode="after")
    def validate_resolved_policies(self) -> "AppConfig":
        """Every resource must resolve to a consistent policy."""
        for resource in self.resources:
            try:
                self.resolve_policy(resource)
            except InvalidWindow as exc:
                raise ValueError(f"Resource {resource.id!r}: {exc.message}") from exc
        return self

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def resolve_policy(self, resource: Resource) -> SchedulingPolicy:
        """
        Merge a resource's overrides onto the defaults.

        Only fields the resource sets explicitly replace the defaults.
        """
        fields: Dict[str, Any] = self.defaults.model_dump()
        fields.update(resource.policy.model_dump(exclude_unset=True, exclude_none=True))
        fields["weekend_days"] = tuple(fields["weekend_days"])

        return SchedulingPolicy(timezone=resource.timezone or self.timezone, **fields)

    def build_policy_table(self) -> PolicyTable:
        """Build the immutable resource/policy table used by the engine."""
        return PolicyTable(
            ResourceProfile(
                id=resource.id,
                name=resource.name,
                calendar_id=resource.calendar_id or resource.id,
                policy=self.resolve_policy(resource),
            )
            for resource in self.resources
        )


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)

    # Look for config.yaml in current directory
    config_path = Path.cwd() / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
