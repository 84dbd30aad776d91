"""Time bounds and error translation for provider calls."""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar, cast

import httpx

from financeflow.core.errors import FinanceFlowError, UpstreamFailure, UpstreamTimeout
from financeflow.core.logger import logger

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


async def bounded(
    awaitable: Awaitable[T],
    timeout: float,
    provider: str,
    label: Optional[str] = None,
) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: The provider call to bound.
        timeout (float): Seconds before the call is abandoned.
        provider (str): Provider name used in the raised error.
        label (Optional[str]): Sub-call or parameter name for the error message.

    Returns:
        The awaited value.

    Raises:
        UpstreamTimeout: If the call did not settle in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        target = f"{provider}:{label}" if label else provider
        logger.warning(f"'{target}' timed out after {timeout}s")
        raise UpstreamTimeout(
            f"{target} did not respond within {timeout}s",
            provider=provider,
            sub_call=label,
        ) from None


def upstream_call(provider: str) -> Callable[[F], F]:
    """
    A decorator that turns transport and payload errors into ``UpstreamFailure``.

    Pipeline errors pass through untouched so adapters may raise their own.

    Args:
        provider (str): Provider name recorded on the raised error.

    Returns:
        Callable: The decorated coroutine function.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except FinanceFlowError:
                raise
            except httpx.HTTPStatusError as e:
                response = e.response
                raise UpstreamFailure(
                    f"{provider} API error: {response.status_code} {response.reason_phrase}",
                    provider=provider,
                ) from e
            except httpx.TimeoutException as e:
                raise UpstreamTimeout(f"{provider} transport timeout: {e}", provider=provider) from e
            except httpx.HTTPError as e:
                raise UpstreamFailure(f"{provider} transport error: {e}", provider=provider) from e
            except (KeyError, TypeError, ValueError) as e:
                raise UpstreamFailure(
                    f"{provider} returned an unexpected payload in '{func.__name__}': {e!r}",
                    provider=provider,
                ) from e
        return cast(F, wrapper)
    return decorator
