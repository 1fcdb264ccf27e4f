"""
Provisioning Kernel: the orchestration core.

Four components:
  types       - entity records, action/effect tags, results
  actions     - factories for well-formed actions
  reducer     - (state, action) -> (state, effects)  (pure, deterministic)
  dispatcher  - owns the state, runs effects against a BackendApi (IO)

Backends:
  HttpBackend (httpx) for real control planes, MemoryBackend for tests.
"""

from provisioning.kernel.backend import BackendApi, BackendError, MemoryBackend
from provisioning.kernel.dispatcher import Orchestrator
from provisioning.kernel.http_backend import HttpBackend
from provisioning.kernel.reducer import empty_state, reduce, replay
from provisioning.kernel.types import (
    MalformedActionError,
    OrchestratorError,
    UnhandledActionError,
)

__all__ = [
    "reduce",
    "replay",
    "empty_state",
    "Orchestrator",
    "BackendApi",
    "BackendError",
    "HttpBackend",
    "MemoryBackend",
    "OrchestratorError",
    "UnhandledActionError",
    "MalformedActionError",
]
