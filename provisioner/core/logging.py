import logging
import logging.config

import structlog

from provisioner.core.config import Settings

# Event keys whose values must never reach a log sink
SENSITIVE_KEYS = frozenset(
    {
        "password",
        "db_password",
        "master_user_password",
        "secret_string",
        "result",
        "value",
    }
)

MASK = "***"


def mask_sensitive_values(logger, method_name, event_dict):
    """Structlog processor that replaces sensitive event values with a mask."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS and event_dict[key] is not None:
            event_dict[key] = MASK
    return event_dict


def configure_logging(config: Settings) -> None:
    """Configure provisioner logging based on settings."""

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            mask_sensitive_values,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            (
                structlog.processors.JSONRenderer()
                if config.LOG_FORMAT == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    if config.LOG_FORMAT == "json":
        formatter_class = "pythonjsonlogger.jsonlogger.JsonFormatter"
        format_string = "%(asctime)s %(name)s %(levelname)s %(message)s"
    else:
        formatter_class = "logging.Formatter"
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Diagnostics go to stderr so they never interleave with the operator prompt
    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "class": formatter_class,
                "format": format_string,
            },
        },
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {
            "": {
                "level": config.LOG_LEVEL,
                "handlers": ["default"],
                "propagate": False,
            },
        },
    }
    logging.config.dictConfig(logging_config)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_driver_logger() -> structlog.BoundLogger:
    """Get provisioning driver logger."""
    return get_logger("driver")


def get_state_logger() -> structlog.BoundLogger:
    """Get state store logger."""
    return get_logger("state")


def get_service_logger(service_name: str) -> structlog.BoundLogger:
    """Get service-specific logger."""
    return get_logger(f"service.{service_name}")


def get_provider_logger(provider_name: str) -> structlog.BoundLogger:
    """Get provider-specific logger."""
    return get_logger(f"provider.{provider_name}")
