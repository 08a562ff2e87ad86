"""Configuration for labcheck."""

import os
from pathlib import Path

# Paths
HOME_DIR = Path(os.getenv("LABCHECK_HOME", Path.home() / ".labcheck"))
DOCKER_CACHE_DIR = Path(os.getenv("LABCHECK_DOCKER_CACHE", HOME_DIR / "docker_cache"))

# Dockerfiles for locally built images are fetched from here
DOCKERFILE_BASE_URL = os.getenv(
    "LABCHECK_DOCKERFILE_URL",
    "https://raw.githubusercontent.com/thearyanahmed/luxctl/master",
)

# Target servers
DEFAULT_HOST = os.getenv("LABCHECK_HOST", "127.0.0.1")
HTTP_PORT = int(os.getenv("LABCHECK_HTTP_PORT", "4221"))
SCENARIO_PORT = int(os.getenv("LABCHECK_SCENARIO_PORT", "8080"))

# Timeouts
CONNECT_TIMEOUT_SECONDS = float(os.getenv("LABCHECK_CONNECT_TIMEOUT", "2"))
HTTP_TIMEOUT_SECONDS = float(os.getenv("LABCHECK_HTTP_TIMEOUT", "5"))
DOCKER_TIMEOUT_SECONDS = int(os.getenv("LABCHECK_DOCKER_TIMEOUT", "120"))
BUILD_TIMEOUT_SECONDS = float(os.getenv("LABCHECK_BUILD_TIMEOUT", "300"))
DOCKERFILE_FETCH_TIMEOUT_SECONDS = float(os.getenv("LABCHECK_FETCH_TIMEOUT", "30"))

# Reporting limits
ERROR_SAMPLE_SIZE = int(os.getenv("LABCHECK_ERROR_SAMPLE", "3"))
MESSAGE_LIMIT = int(os.getenv("LABCHECK_MESSAGE_LIMIT", "500"))
OUTCOME_CONTEXT_LIMIT = 4900  # API rejects context above 5000 chars
