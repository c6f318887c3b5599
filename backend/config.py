"""
Configuration module for the trip tracking backend.

Centralizes all configuration settings including feature flags,
database URLs, and external service configurations.
"""

import os


class Config:
    """Application configuration loaded from environment variables."""

    # Feature Flags
    USE_DATABASE: bool = os.getenv("USE_DATABASE", "false").lower() in ("true", "1", "yes", "on")
    DIRECTIONS_ENABLED: bool = os.getenv("DIRECTIONS_ENABLED", "true").lower() == "true"

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./trips.db")
    SQLALCHEMY_ECHO: bool = os.getenv("SQLALCHEMY_ECHO", "false").lower() == "true"

    # Directions (OSRM) Configuration
    OSRM_BASE_URL: str = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
    OSRM_ROUTE_URL: str = os.getenv("OSRM_ROUTE_URL", f"{OSRM_BASE_URL}/route/v1/driving")
    OSRM_TIMEOUT: float = float(os.getenv("OSRM_TIMEOUT", "5.0"))
    OSRM_MAX_RETRIES: int = int(os.getenv("OSRM_MAX_RETRIES", "2"))
    OSRM_RETRY_DELAY: float = float(os.getenv("OSRM_RETRY_DELAY", "0.5"))

    # Directions providers accept at most this many intermediate stops per request
    MAX_WAYPOINTS: int = int(os.getenv("MAX_WAYPOINTS", "23"))

    # Scanning
    SCAN_REPLAY_WINDOW_SECONDS: float = float(os.getenv("SCAN_REPLAY_WINDOW_SECONDS", "2.0"))
    QR_SECRET_KEY: str = os.getenv("QR_SECRET_KEY", "")

    # Live position cadence (seconds)
    POSITION_FOREGROUND_INTERVAL: float = float(os.getenv("POSITION_FOREGROUND_INTERVAL", "30"))
    POSITION_BACKGROUND_INTERVAL: float = float(os.getenv("POSITION_BACKGROUND_INTERVAL", "90"))
    BACKGROUND_TRACKING_ENABLED: bool = os.getenv("BACKGROUND_TRACKING_ENABLED", "true").lower() == "true"

    # Urban average used for straight-line time estimates
    AVERAGE_SPEED_KMH: float = float(os.getenv("AVERAGE_SPEED_KMH", "30.0"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @classmethod
    def get_config_dict(cls) -> dict:
        """Return configuration as dictionary (for debugging)."""
        return {
            "USE_DATABASE": cls.USE_DATABASE,
            "DATABASE_URL": cls.DATABASE_URL.split("@")[-1],
            "DIRECTIONS_ENABLED": cls.DIRECTIONS_ENABLED,
            "OSRM_ROUTE_URL": cls.OSRM_ROUTE_URL,
            "MAX_WAYPOINTS": cls.MAX_WAYPOINTS,
            "SCAN_REPLAY_WINDOW_SECONDS": cls.SCAN_REPLAY_WINDOW_SECONDS,
            "QR_SIGNATURES": bool(cls.QR_SECRET_KEY),
            "POSITION_FOREGROUND_INTERVAL": cls.POSITION_FOREGROUND_INTERVAL,
            "POSITION_BACKGROUND_INTERVAL": cls.POSITION_BACKGROUND_INTERVAL,
            "BACKGROUND_TRACKING_ENABLED": cls.BACKGROUND_TRACKING_ENABLED,
        }


# Global configuration instance
config = Config()
