"""Configuration of the charger availability engine"""

from typing import List, Optional
from dataclasses import dataclass, field, fields
from datetime import timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo
import os
import yaml


CONFIG_FILEPATH_VARIABLE = "CHARGER_AVAILABILITY_CONFIG"

DEFAULT_SLOT_TIMES = [
    f"{hour:02d}:{minute:02d}" for hour in range(9, 21) for minute in (0, 30)
]


@dataclass
class Config:
    """
    - database_url: SQLModel engine url of the booking store.
    - timezone: IANA name of the viewer timezone for naive timestamps and dates.
    - default_duration_minutes: Duration of bookings without end and duration.
    - minimum_duration_minutes: If positive, clamp empty or inverted windows
    to this duration instead of rejecting them.
    - snapshot_retry_*: Exponential backoff of failed snapshot fetches.
    - clock_skew_tolerance_seconds: Backwards clock jumps beyond this
    re-derive all tracked bookings.
    - diagnostics_limit: Number of malformed events remembered.
    - mqtt_*: Push channel broker and topic.
    """

    database_url: str = "sqlite:///bookings.db"
    timezone: str = "UTC"
    default_duration_minutes: float = 60.0
    minimum_duration_minutes: float = 0.0
    snapshot_retry_initial_seconds: float = 1.0
    snapshot_retry_factor: float = 2.0
    snapshot_retry_max_seconds: float = 60.0
    update_interval: float = 1.0
    clock_skew_tolerance_seconds: float = 5.0
    diagnostics_limit: int = 100
    slot_times: List[str] = field(default_factory=lambda: list(DEFAULT_SLOT_TIMES))
    slot_minutes: float = 30.0
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic: str = "bookings/changed"
    mqtt_keepalive: int = 60

    def __post_init__(self) -> None:
        assert (
            self.default_duration_minutes > 0
        ), f"Invalid default duration {self.default_duration_minutes}."
        assert (
            self.minimum_duration_minutes >= 0
        ), f"Invalid minimum duration {self.minimum_duration_minutes}."
        assert (
            0 < self.snapshot_retry_initial_seconds <= self.snapshot_retry_max_seconds
        ), "Invalid snapshot retry delays."
        assert self.snapshot_retry_factor >= 1.0, "Invalid snapshot retry factor."
        assert self.diagnostics_limit > 0, "Invalid diagnostics limit."
        # Fail early on unknown timezone names.
        self.local_timezone

    @property
    def local_timezone(self) -> tzinfo:
        return timezone.utc if self.timezone.upper() == "UTC" else ZoneInfo(self.timezone)

    @property
    def default_duration(self) -> timedelta:
        return timedelta(minutes=self.default_duration_minutes)

    @property
    def minimum_duration(self) -> timedelta:
        return timedelta(minutes=self.minimum_duration_minutes)

    @property
    def slot_length(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    @property
    def clock_skew_tolerance(self) -> timedelta:
        return timedelta(seconds=self.clock_skew_tolerance_seconds)


def load_config(filepath: Optional[str] = None) -> Config:
    """
    Load Config from the YAML file at filepath if given,
    else at the path in CHARGER_AVAILABILITY_CONFIG if set, else return defaults.
    """
    if filepath is None:
        filepath = os.environ.get(CONFIG_FILEPATH_VARIABLE)
    if not filepath:
        return Config()

    with open(filepath) as file:
        values = yaml.safe_load(file) or {}
    if not isinstance(values, dict):
        raise ValueError(f"{filepath} does not contain a mapping.")
    known = {config_field.name for config_field in fields(Config)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {filepath}: {', '.join(unknown)}")
    return Config(**values)
