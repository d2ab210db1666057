from __future__ import annotations

import asyncio
import functools
import inspect
import traceback
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from loguru import logger

from stream_relay.errors import AppError

P = ParamSpec("P")
R = TypeVar("R")


def _format_tail(exc: BaseException, *, limit: int = 6) -> str:
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return "".join(tb[-limit:])


def wrap_exceptions(
    module_exc_cls: type[AppError],
    *catch: type[Exception],
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator to log short traceback and wrap *catch* errors into *module_exc_cls*.

    ``AppError`` instances pass through untouched so layers do not double wrap.
    """

    caught: tuple[type[Exception], ...] = catch or (Exception,)

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        context = {"operation": func.__qualname__}

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[override]
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except AppError:
                    raise
                except caught as exc:
                    logger.opt(exception=exc).debug("{}", _format_tail(exc))
                    raise module_exc_cls(message=str(exc), context=context) from exc

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs):  # type: ignore[override]
            try:
                return func(*args, **kwargs)
            except AppError:
                raise
            except caught as exc:
                logger.opt(exception=exc).debug("{}", _format_tail(exc))
                raise module_exc_cls(message=str(exc), context=context) from exc

        return sync_wrapper  # type: ignore[return-value]

    return decorator
