"""
Kernel test configuration.

Dispatcher tests run against a MemoryBackend shared by every endpoint,
with polling fast enough to finish in milliseconds.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from provisioning.kernel.backend import MemoryBackend
from provisioning.kernel.dispatcher import Orchestrator

ENDPOINT = "http://prod"
ZONE = "us-central1-b"


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest_asyncio.fixture
async def orch(backend):
    orchestrator = Orchestrator(
        lambda endpoint: backend,
        default_endpoint=ENDPOINT,
        zone=ZONE,
        poll_interval=0.001,
        poll_timeout=0.5,
    )
    yield orchestrator
    await orchestrator.close()
