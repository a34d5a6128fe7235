#!/usr/bin/env python3
"""
Selection System Configuration
Environment-driven settings for the selection coordinator and its HTTP facade
"""
import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name, default='false'):
    return os.getenv(name, default).lower() == 'true'


class SelectionConfig:
    """Configuration for the object selection coordinator"""

    # Workspace service (HTTP data facade)
    SERVICE_URL = os.getenv('SELECTION_SERVICE_URL', 'http://localhost:8080')
    REQUEST_TIMEOUT_SECONDS = float(os.getenv('SELECTION_REQUEST_TIMEOUT', 10))

    # Shareable links are built against this base
    SHARE_BASE_URL = os.getenv('SELECTION_SHARE_BASE_URL', SERVICE_URL)

    # Debug mirror of the raw selection (DEBUG_SLOTS) and debug-tier events
    DEBUG = _env_flag('SELECTION_DEBUG')
    STREAM_DEBUG_EVENTS = _env_flag('SELECTION_STREAM_DEBUG_EVENTS')

    # Reject resolutions that finish after a newer one already committed.
    # Off by default: overlapping resolutions commit in completion order.
    DISCARD_STALE_RESOLUTIONS = _env_flag('SELECTION_DISCARD_STALE')

    # Event stream
    EVENT_BUFFER_SIZE = int(os.getenv('SELECTION_EVENT_BUFFER', 1000))

    # Error handling
    ERROR_SUPPRESS_MINUTES = int(os.getenv('SELECTION_ERROR_SUPPRESS_MINUTES', 5))

    # Logging Configuration
    LOG_LEVEL = os.getenv('SELECTION_LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('SELECTION_LOG_FILE', '')

    @classmethod
    def get_config_summary(cls):
        """Get current configuration summary"""
        return {
            'service_url': cls.SERVICE_URL,
            'request_timeout_seconds': cls.REQUEST_TIMEOUT_SECONDS,
            'debug': cls.DEBUG,
            'stream_debug_events': cls.STREAM_DEBUG_EVENTS,
            'discard_stale_resolutions': cls.DISCARD_STALE_RESOLUTIONS,
            'event_buffer_size': cls.EVENT_BUFFER_SIZE,
            'log_level': cls.LOG_LEVEL,
        }

    @classmethod
    def validate_config(cls):
        """Validate configuration settings"""
        issues = []

        if not cls.SERVICE_URL.startswith(('http://', 'https://')):
            issues.append("SERVICE_URL must be an http(s) URL")

        if cls.REQUEST_TIMEOUT_SECONDS <= 0:
            issues.append("REQUEST_TIMEOUT_SECONDS must be positive")

        if cls.EVENT_BUFFER_SIZE < 1:
            issues.append("EVENT_BUFFER_SIZE must be at least 1")

        if cls.ERROR_SUPPRESS_MINUTES < 0:
            issues.append("ERROR_SUPPRESS_MINUTES cannot be negative")

        if logging.getLevelName(cls.LOG_LEVEL.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            issues.append(f"LOG_LEVEL '{cls.LOG_LEVEL}' is not a logging level")

        return issues


# Environment-specific configurations
class DevelopmentConfig(SelectionConfig):
    """Development environment configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(SelectionConfig):
    """Production environment configuration"""
    DEBUG = False
    LOG_LEVEL = 'INFO'


class TestConfig(SelectionConfig):
    """Test environment configuration"""
    SERVICE_URL = 'http://selection.test'
    SHARE_BASE_URL = 'http://selection.test'
    DEBUG = False
    LOG_LEVEL = 'DEBUG'
    REQUEST_TIMEOUT_SECONDS = 2
    ERROR_SUPPRESS_MINUTES = 0


# Configuration factory
def get_config(env=None):
    """Get configuration based on environment"""
    env = env or os.getenv('SELECTION_ENV', 'development')

    configs = {
        'development': DevelopmentConfig,
        'production': ProductionConfig,
        'test': TestConfig
    }

    return configs.get(env, DevelopmentConfig)


def setup_logging(config=None):
    """Configure root logging from the given config class"""
    config = config or get_config()
    handlers = [logging.StreamHandler()]
    if config.LOG_FILE:
        handlers.append(logging.FileHandler(config.LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    return logging.getLogger('selection_system')
