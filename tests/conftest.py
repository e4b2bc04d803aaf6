import os

import pytest

from gwmetrics.core.config import reset_settings
from gwmetrics.core.metrics_aggregator.registry import Registry, set_default_registry


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "LOG_LEVEL",
    "LOG_JSON",
    "SERVICE_NAME",
    "METRICS_DEFAULT_COLLECTORS",
    "METRICS_NAMESPACE",
    "METRICS_MAX_SERIES_PER_FAMILY",
    "METRICS_INCLUDE_TIMESTAMPS",
    "PUSHGATEWAY_URL",
    "PUSHGATEWAY_TIMEOUT_SECONDS",
    "PUSHGATEWAY_HEADERS",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables and cached settings between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    reset_settings()
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        reset_settings()


@pytest.fixture(autouse=True)
def default_registry_isolation():
    """Each test starts with a fresh lazily built default registry."""
    set_default_registry(None)
    try:
        yield
    finally:
        set_default_registry(None)


@pytest.fixture
def registry():
    return Registry()
