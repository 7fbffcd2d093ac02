"""Configuration management for Homelab Insights"""

import os
from typing import Optional, Any
from pydantic_settings import BaseSettings
from pydantic import field_validator, ValidationInfo


class Settings(BaseSettings):
    """Application settings and analysis policy constants

    Every threshold the analyzers use lives here so it can be overridden
    from the environment (or a ``.env`` file) and probed in tests.
    """

    # API Configuration
    PORT: int = 8000
    HOST: str = "0.0.0.0"
    LOG_LEVEL: str = "info"
    LOG_JSON: bool = False
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]  # dashboard origin

    # Storage
    METRICS_DB_PATH: str = "./data/metrics.db"
    INSIGHTS_DB_PATH: str = "./data/insights.db"

    # Scheduler
    INSIGHTS_INTERVAL_SECONDS: int = 900
    SCHEDULER_ENABLED: bool = True
    HISTORY_RETENTION_DAYS: int = 90

    # Summarizer Configuration
    SUMMARIZER_PROVIDER: str = "none"  # none, ollama, openai
    OLLAMA_HOST: str = "localhost"
    OLLAMA_PORT: int = 11434
    OLLAMA_MODEL: str = "llama3.1"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    SUMMARIZER_TIMEOUT_SECONDS: float = 5.0
    SUMMARIZER_PROBE_TIMEOUT_SECONDS: float = 2.0

    # Anomaly detection
    ANOMALY_WINDOW_HOURS: int = 24
    ANOMALY_Z_THRESHOLD: float = 2.0
    ANOMALY_HIGH_Z_THRESHOLD: float = 3.0
    MEMORY_PRESSURE_PERCENT: float = 90.0
    MEMORY_CRITICAL_PERCENT: float = 95.0
    POOL_FILL_WARNING_PERCENT: float = 85.0
    POOL_FILL_CRITICAL_PERCENT: float = 95.0
    POOL_EXPECTED_PERCENT: float = 75.0
    SMART_REALLOCATED_WARNING: int = 10
    SMART_REALLOCATED_CRITICAL: int = 50
    SMART_PENDING_WARNING: int = 5
    SMART_PENDING_CRITICAL: int = 20
    SMART_TEMPERATURE_WARNING: float = 55.0

    # Capacity forecasting
    CAPACITY_LOOKBACK_DAYS: int = 30
    CAPACITY_MIN_DATA_POINTS: int = 7
    CAPACITY_HIGH_CONFIDENCE_POINTS: int = 30
    CAPACITY_HIGH_CONFIDENCE: float = 0.9
    CAPACITY_LOW_CONFIDENCE: float = 0.7
    CAPACITY_WARNING_DAYS: int = 90
    CAPACITY_URGENT_DAYS: int = 30
    MEMORY_HIGH_USAGE_PERCENT: float = 80.0

    # Disk failure prediction
    DISK_LOOKBACK_DAYS: int = 30
    DISK_REALLOCATED_WEIGHT: int = 40
    DISK_PENDING_WEIGHT: int = 30
    DISK_HIGH_TEMPERATURE: float = 50.0
    DISK_HIGH_TEMPERATURE_WEIGHT: int = 15
    DISK_TEMPERATURE_SLOPE: float = 0.5
    DISK_RISING_TEMPERATURE_WEIGHT: int = 10
    DISK_MAX_AGE_YEARS: float = 4.0
    DISK_AGE_WEIGHT: int = 10
    DISK_FAILED_HEALTH_WEIGHT: int = 50
    DISK_CRITICAL_SECTORS: int = 100
    DISK_SAMPLE_TOLERANCE_SECONDS: int = 300

    # Performance trends
    TREND_PERIOD_DAYS: int = 30
    TREND_VOLATILITY_RATIO: float = 0.5
    TREND_CHANGE_PERCENT: float = 20.0

    # Cost optimization
    COST_IDLE_CPU_PERCENT: float = 1.0
    COST_IDLE_MIN_SAMPLES: int = 20
    COST_IDLE_CONTAINER_THRESHOLD: int = 3
    COST_IDLE_CONTAINER_SAVINGS_USD: float = 0.5
    COST_SNAPSHOT_THRESHOLD: int = 50
    COST_LOW_CPU_PERCENT: float = 20.0
    COST_POWER_SAVING_RATIO: float = 0.15
    COST_KWH_PRICE_USD: float = 0.12
    COST_MIN_INSIGHT_SAVINGS_USD: float = 10.0

    @field_validator("CORS_ORIGINS")
    @classmethod
    def validate_cors_origins(cls, v: list[str]) -> list[str]:
        """Each origin must be '*' or an http(s) URL"""
        for origin in v:
            if origin != "*" and not origin.startswith(("http://", "https://")):
                raise ValueError(
                    f"CORS origin '{origin}' must start with http:// or https://"
                )
        return v

    @field_validator("PORT", "OLLAMA_PORT")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate port is in valid range"""
        if not 1 <= v <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels"""
        valid_levels = ("debug", "info", "warning", "error", "critical")
        v_lower = v.lower()
        if v_lower not in valid_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {valid_levels}, got '{v}'"
            )
        return v_lower

    @field_validator("SUMMARIZER_PROVIDER")
    @classmethod
    def validate_summarizer_provider(cls, v: str) -> str:
        """Validate summarizer provider is supported"""
        valid_providers = ("none", "ollama", "openai")
        v_lower = v.lower()
        if v_lower not in valid_providers:
            raise ValueError(
                f"SUMMARIZER_PROVIDER must be one of {valid_providers}, got '{v}'"
            )
        return v_lower

    @field_validator("INSIGHTS_INTERVAL_SECONDS")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        """Validate the generation interval is reasonable"""
        if v < 60:
            raise ValueError(f"INSIGHTS_INTERVAL_SECONDS must be at least 60, got {v}")
        if v > 86400:
            raise ValueError(f"INSIGHTS_INTERVAL_SECONDS seems excessively high: {v}")
        return v

    @field_validator("SUMMARIZER_TIMEOUT_SECONDS", "SUMMARIZER_PROBE_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Summarizer calls must stay bounded"""
        if v <= 0:
            raise ValueError(f"summarizer timeouts must be positive, got {v}")
        if v > 60:
            raise ValueError(f"summarizer timeout {v}s would block the insight cycle")
        return v

    @field_validator("ANOMALY_WINDOW_HOURS", "CAPACITY_LOOKBACK_DAYS", "DISK_LOOKBACK_DAYS", "TREND_PERIOD_DAYS", "HISTORY_RETENTION_DAYS")
    @classmethod
    def validate_window(cls, v: int) -> int:
        """Analysis windows must cover at least one unit"""
        if v < 1:
            raise ValueError(f"analysis window must be at least 1, got {v}")
        return v

    @field_validator("ANOMALY_HIGH_Z_THRESHOLD")
    @classmethod
    def validate_high_z(cls, v: float, info: ValidationInfo) -> float:
        """High severity must not be easier to reach than a plain anomaly"""
        low = info.data.get("ANOMALY_Z_THRESHOLD")
        if low is not None and v < low:
            raise ValueError(
                f"ANOMALY_HIGH_Z_THRESHOLD ({v}) must be >= ANOMALY_Z_THRESHOLD ({low})"
            )
        return v

    def get_config_report(self) -> dict[str, Any]:
        """
        Summarize runtime configuration for the health endpoint.

        Reports configuration problems that degrade functionality without
        preventing startup (e.g. a summarizer provider without credentials).
        """
        env = os.getenv("ENV", "development").lower()
        config_issues = []

        if self.SUMMARIZER_PROVIDER == "openai" and not self.OPENAI_API_KEY:
            config_issues.append("SUMMARIZER_PROVIDER is openai but OPENAI_API_KEY is not set")

        if not self.SCHEDULER_ENABLED:
            config_issues.append("Scheduler disabled - insights are only generated on demand")

        return {
            "environment": env,
            "summarizer_provider": self.SUMMARIZER_PROVIDER,
            "scheduler_enabled": self.SCHEDULER_ENABLED,
            "interval_seconds": self.INSIGHTS_INTERVAL_SECONDS,
            "config_issues": config_issues,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()
