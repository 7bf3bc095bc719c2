# config/monitoring.py

import os


def _env_flag(name, default):
    return os.environ.get(name, "true" if default else "false").strip().lower() == "true"


class MonitoringConfig:
    """Log handler and Prometheus exposure settings"""

    # Prometheus metrics are exposed at METRICS_ENDPOINT when enabled.
    MONITORING_ENABLED = _env_flag("MONITORING_ENABLED", False)
    METRICS_ENDPOINT = os.environ.get("METRICS_ENDPOINT", "/metrics")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_NAME = os.environ.get("LOG_FILE_NAME", "roster.log")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 5 * 1024 * 1024))
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 5))
    ENABLE_FILE_LOGGING = _env_flag("ENABLE_FILE_LOGGING", True)
    ENABLE_CONSOLE_LOGGING = _env_flag("ENABLE_CONSOLE_LOGGING", True)

    # Stamped onto every JSON log line
    APP_NAME = os.environ.get("APP_NAME", "donor-roster")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    LOG_FORMAT = "text"


class ProductionMonitoringConfig(MonitoringConfig):
    """JSON to a rotating file; the container runtime collects stdout separately"""

    LOG_FORMAT = "json"
    ENABLE_CONSOLE_LOGGING = _env_flag("ENABLE_CONSOLE_LOGGING", False)


class TestingMonitoringConfig(MonitoringConfig):
    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False
