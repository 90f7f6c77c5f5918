"""Adapters attaching idempotency to callables.

- function.py: higher-order wrapping (make_idempotent) and its decorator form

Adapters only extract the payload and execution budget from call arguments;
all idempotency logic lives in the core orchestrator.
"""

from idempotent_functions.adapters.function import InvocationContext, idempotent, make_idempotent

__all__ = ["InvocationContext", "idempotent", "make_idempotent"]
