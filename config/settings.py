"""
config/settings.py
──────────────────
Application configuration loaded from environment variables.
"""
import os
from dataclasses import dataclass, field


def _tank_ids() -> list[str]:
    raw = os.getenv("TANK_IDS", "tank_001")
    return [t.strip() for t in raw.split(",") if t.strip()]


@dataclass
class Settings:
    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Tanks monitored by app.py
    TANK_IDS: list[str] = field(default_factory=_tank_ids)

    # Notification throttling
    NOTIFY_COOLDOWN_S: float = float(os.getenv("NOTIFY_COOLDOWN_S", "5.0"))
    COOLDOWN_SCOPE: str = os.getenv("COOLDOWN_SCOPE", "global")  # global | tank | parameter
    NOTIFIED_CAPACITY: int = int(os.getenv("NOTIFIED_CAPACITY", "500"))
    DEFERRED_CAPACITY: int = int(os.getenv("DEFERRED_CAPACITY", "100"))

    # Molt care windows (hours)
    POSTMOLT_RISK_WINDOW_H: float = float(os.getenv("POSTMOLT_RISK_WINDOW_H", "6"))
    POSTMOLT_REMAINING_WINDOW_H: float = float(os.getenv("POSTMOLT_REMAINING_WINDOW_H", "66"))
    MAX_ECDYSIS_H: float = float(os.getenv("MAX_ECDYSIS_H", "8"))

    # Molt detection confidence policy
    MIN_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_DETECTION_CONFIDENCE", "0.7"))
    HIGH_CONFIDENCE_THRESHOLD: float = float(os.getenv("HIGH_CONFIDENCE_THRESHOLD", "0.9"))
    MOLT_SEEN_CAPACITY: int = int(os.getenv("MOLT_SEEN_CAPACITY", "1000"))

    # Molt re-evaluation cadence (minutes)
    MOLT_CHECK_INTERVAL_MIN: float = float(os.getenv("MOLT_CHECK_INTERVAL_MIN", "30"))
    CRITICAL_CHECK_INTERVAL_MIN: float = float(os.getenv("CRITICAL_CHECK_INTERVAL_MIN", "15"))

    # Source re-subscription after a stream terminates
    RECONNECT_DELAY_S: float = float(os.getenv("RECONNECT_DELAY_S", "5.0"))

    # Simulation
    SIMULATION_SEED: int = int(os.getenv("SIMULATION_SEED", "42"))
    SIMULATION_STEP_S: float = float(os.getenv("SIMULATION_STEP_S", "1.0"))
    DEMO_DURATION_S: float = float(os.getenv("DEMO_DURATION_S", "20"))


settings = Settings()
