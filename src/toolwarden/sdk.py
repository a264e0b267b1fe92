"""SDK wrapper: put a policy check in front of any callable.

    from toolwarden import protect

    @protect("aws.rds.delete_database")
    async def delete_database(name: str) -> None:
        ...

    await delete_database("production")   # reviewed before it runs
"""

import asyncio
import functools
import inspect
from typing import Any, Callable

from toolwarden.authorize import ActionDenied, Authorizer, get_authorizer


def call_arguments(fn: Callable, args: tuple, kwargs: dict[str, Any]) -> dict[str, Any]:
    """Name the arguments of a call so dot-paths can reach them."""
    try:
        bound = inspect.signature(fn).bind_partial(*args, **kwargs)
    except (TypeError, ValueError):
        return {"args": list(args), **kwargs}
    return dict(bound.arguments)


def protect(
    tool_name: str,
    fn: Callable | None = None,
    *,
    authorizer: Authorizer | None = None,
) -> Callable:
    """Wrap ``fn`` so every call is authorized first.

    Works on plain and async functions, directly (``protect(name, fn)``)
    or as a decorator (``@protect(name)``). Sync wrappers drive the
    authorization with ``asyncio.run`` and so can't be called from inside
    a running event loop; wrap an async function there instead.

    Raises (from the wrapped call):
        ActionDenied: The reviewer denied the call.
        ApprovalUnavailable: Review needed but nobody can approve.
    """
    if fn is None:
        return lambda f: protect(tool_name, f, authorizer=authorizer)

    def _authorizer() -> Authorizer:
        return authorizer or get_authorizer()

    def _denied() -> ActionDenied:
        return ActionDenied(f"toolwarden: execution of {tool_name} was denied.", tool_name=tool_name)

    if inspect.iscoroutinefunction(fn):
        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            payload = call_arguments(fn, args, kwargs)
            if not await _authorizer().authorize_action(tool_name, payload):
                raise _denied()
            return await fn(*args, **kwargs)

        return async_wrapper

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        payload = call_arguments(fn, args, kwargs)
        if not asyncio.run(_authorizer().authorize_action(tool_name, payload)):
            raise _denied()
        return fn(*args, **kwargs)

    return wrapper
