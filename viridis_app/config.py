from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import List


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_float(name: str, default: float, minimum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value != value:
        return default
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = [item.strip() for item in raw.split(",") if item.strip()]
    return items if items else default


@dataclass(slots=True)
class Settings:
    app_name: str
    environment: str
    allowed_origins: List[str]
    redis_url: str
    redis_key_prefix: str
    palette_path: Path
    throttle_cooldown_seconds: float
    throttle_sweep_seconds: float
    idle_tick_seconds: float
    idle_threshold_seconds: float
    proximity_radius_km: float
    average_window_size: int
    retention_hours: int
    background_tasks_enabled: bool
    max_request_bytes: int

    @property
    def retention_ms(self) -> int:
        return self.retention_hours * 60 * 60 * 1000

    @classmethod
    def from_env(cls) -> "Settings":
        package_root = Path(__file__).resolve().parent
        palette_path = Path(os.getenv("PALETTE_PATH", package_root / "data" / "palette.json"))

        return cls(
            app_name=os.getenv("APP_NAME", "Viridis"),
            environment=os.getenv("APP_ENV", "production"),
            allowed_origins=_env_list("ALLOWED_ORIGINS", ["http://localhost:5000"]),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0").strip(),
            redis_key_prefix=os.getenv("REDIS_KEY_PREFIX", "viridis").strip() or "viridis",
            palette_path=palette_path,
            throttle_cooldown_seconds=_env_float("THROTTLE_COOLDOWN_SECONDS", 12.0, minimum=0.0),
            throttle_sweep_seconds=_env_float("THROTTLE_SWEEP_SECONDS", 300.0, minimum=1.0),
            idle_tick_seconds=_env_float("IDLE_TICK_SECONDS", 10.0, minimum=0.5),
            idle_threshold_seconds=_env_float("IDLE_THRESHOLD_SECONDS", 90.0, minimum=1.0),
            proximity_radius_km=_env_float("PROXIMITY_RADIUS_KM", 50.0, minimum=0.0),
            average_window_size=_env_int("AVERAGE_WINDOW_SIZE", 8, minimum=1),
            retention_hours=_env_int("RETENTION_HOURS", 24, minimum=1),
            background_tasks_enabled=_env_bool("BACKGROUND_TASKS_ENABLED", True),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 16_384, minimum=1024),
        )
