import os
import sys
from pathlib import Path

import pytest

# Settings are read once; keep tests off PostGIS and the background loop
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("AGGREGATION_IN_PROCESS", "false")
os.environ.setdefault("AGGREGATION_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("AGGREGATION_SHARED_LOCK", "false")

# Add the backend directory so `servicezones` package imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))

from servicezones.services.store_memory import InMemoryBoundaryStore  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return InMemoryBoundaryStore()
