"""Higher-order wrapping of functions with idempotency.

These adapters turn any function (sync or async) into an async function whose
body runs at most once per idempotency key. They are thin: they pick the
payload and the execution budget out of the call arguments and hand
everything to IdempotencyOrchestrator.

Examples:
    Lambda-style handler::

        from idempotent_functions.adapters.function import make_idempotent
        from idempotent_functions.config import IdempotencyConfig
        from idempotent_functions.storage.dynamodb import DynamoDBPersistenceStore

        async def create_order(event, context):
            ...

        handler = make_idempotent(
            create_order,
            persistence_store=DynamoDBPersistenceStore(table_name="IdempotencyTable"),
            config=IdempotencyConfig(event_key_jmespath="parse_json(body).order_id"),
        )

        # event is the payload, context.get_remaining_time_in_millis() caps the lock
        result = await handler(event, context)

    Any function, payload passed by keyword::

        @idempotent(persistence_store=store, data_keyword_argument="order")
        def charge(order: dict, retries: int = 0) -> dict:
            ...

        await charge(order={"id": 1, "amount": 10})
"""

import functools
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from idempotent_functions.config import IdempotencyConfig
from idempotent_functions.core.orchestrator import IdempotencyOrchestrator
from idempotent_functions.storage.base import PersistenceStore


@runtime_checkable
class InvocationContext(Protocol):
    """Anything exposing the remaining execution budget, e.g. a Lambda context."""

    def get_remaining_time_in_millis(self) -> int: ...


def make_idempotent(
    func: Callable[..., Any],
    *,
    persistence_store: PersistenceStore,
    config: IdempotencyConfig | None = None,
    function_name: str | None = None,
    data_keyword_argument: str | None = None,
    clock: Callable[[], float] = time.time,
) -> Callable[..., Awaitable[Any]]:
    """Wrap a function so it runs at most once per idempotency key.

    The payload is the first positional argument, or the keyword argument
    named by data_keyword_argument. A second positional argument, or a
    ``context`` keyword argument, that implements InvocationContext caps how
    long the key stays locked if this invocation dies.

    Args:
        func: Function to wrap, sync or async
        persistence_store: Store holding idempotency records
        config: Configuration object
        function_name: Key scope, defaults to the function's qualified name
        data_keyword_argument: Keyword argument holding the payload
        clock: Returns the current epoch time in seconds

    Returns:
        Async wrapper exposing the orchestrator as ``.orchestrator``
    """
    orchestrator = IdempotencyOrchestrator(
        persistence_store=persistence_store,
        config=config,
        function_name=function_name or f"{func.__module__}.{func.__qualname__}",
        clock=clock,
    )

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        payload = _extract_payload(func, args, kwargs, data_keyword_argument)
        return await orchestrator.process(
            payload,
            functools.partial(func, *args, **kwargs),
            remaining_time_in_millis=_remaining_time_in_millis(args, kwargs),
        )

    wrapper.orchestrator = orchestrator  # type: ignore[attr-defined]
    return wrapper


def idempotent(
    *,
    persistence_store: PersistenceStore,
    config: IdempotencyConfig | None = None,
    function_name: str | None = None,
    data_keyword_argument: str | None = None,
    clock: Callable[[], float] = time.time,
) -> Callable[[Callable[..., Any]], Callable[..., Awaitable[Any]]]:
    """Decorator form of make_idempotent()."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        return make_idempotent(
            func,
            persistence_store=persistence_store,
            config=config,
            function_name=function_name,
            data_keyword_argument=data_keyword_argument,
            clock=clock,
        )

    return decorator


def _extract_payload(
    func: Callable[..., Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    data_keyword_argument: str | None,
) -> Any:
    if data_keyword_argument is not None:
        if data_keyword_argument not in kwargs:
            raise TypeError(
                f"{func.__qualname__}() must be called with the payload as keyword "
                f"argument {data_keyword_argument!r}"
            )
        return kwargs[data_keyword_argument]

    if not args:
        raise TypeError(f"{func.__qualname__}() must be called with the payload as first argument")
    return args[0]


def _remaining_time_in_millis(args: tuple[Any, ...], kwargs: dict[str, Any]) -> int | None:
    context = kwargs.get("context")
    if context is None and len(args) > 1:
        context = args[1]
    if isinstance(context, InvocationContext):
        return int(context.get_remaining_time_in_millis())
    return None
