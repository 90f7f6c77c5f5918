"""Core logic for idempotent execution.

- State machine: record lifecycle (ABSENT -> INPROGRESS -> COMPLETED/ABSENT)
- Orchestrator: key derivation plus state machine, per operation scope
- Cache: bounded LRU of completed records
- Replay: payload validation and decoding of stored results
- Cleanup: sweeping expired records from stores without native expiry
"""

from idempotent_functions.core.cache import LocalCache
from idempotent_functions.core.orchestrator import IdempotencyOrchestrator
from idempotent_functions.core.state_machine import StateResult, process_idempotency

__all__ = ["IdempotencyOrchestrator", "LocalCache", "StateResult", "process_idempotency"]
