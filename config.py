# config.py
import os
from dataclasses import dataclass
from pathlib import Path

# -- Configuration et constantes --
HOST        = os.getenv("HOST", "0.0.0.0")
PORT        = int(os.getenv("PORT", "8080"))
LOG_LEVEL   = os.getenv("LOG_LEVEL", "INFO")
APP_ENV     = os.getenv("APP_ENV", "development")
STATIC_DIR  = Path(os.getenv("STATIC_DIR", Path(__file__).parent / "static"))

TICK_MIN_SECONDS        = float(os.getenv("TICK_MIN_SECONDS", "1.0"))
TICK_MAX_SECONDS        = float(os.getenv("TICK_MAX_SECONDS", "3.0"))
START_DELAY_SECONDS     = float(os.getenv("START_DELAY_SECONDS", "0.1"))
SESSION_MAX_AGE_SECONDS = float(os.getenv("SESSION_MAX_AGE_SECONDS", str(30 * 60)))
REAPER_INTERVAL_SECONDS = float(os.getenv("REAPER_INTERVAL_SECONDS", str(5 * 60)))


@dataclass(frozen=True)
class SimulationTiming:
    tick_min: float = TICK_MIN_SECONDS
    tick_max: float = TICK_MAX_SECONDS
    start_delay: float = START_DELAY_SECONDS
    session_max_age: float = SESSION_MAX_AGE_SECONDS
    reaper_interval: float = REAPER_INTERVAL_SECONDS

    def __post_init__(self):
        if self.tick_min < 0 or self.tick_max < self.tick_min:
            raise ValueError(f"Invalid tick interval [{self.tick_min}, {self.tick_max}]")
