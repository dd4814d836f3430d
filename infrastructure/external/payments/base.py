"""
Base payment client implementing shared concerns: retry, threading, logging, amounts.

Concrete providers should subclass and implement provider-specific logic.
"""
from __future__ import annotations

import functools
from decimal import Decimal
from typing import Any, Callable, Optional

import anyio
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from domain.payment.fees import to_minor_units


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"
    # transport-level errors worth retrying; subclasses fill in the SDK types
    retryable_exceptions: tuple[type[BaseException], ...] = ()

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    async def _call(self, fn: Callable[..., Any], *args: Any, retry: bool = True, **kwargs: Any) -> Any:
        """Run a blocking SDK call in a worker thread, retrying transport errors.

        Callers must pass an idempotency key for writes when retry is enabled.
        """
        call = functools.partial(fn, *args, **kwargs)
        attempts = int(self._retry_cfg["max"]) + 1 if retry and self.retryable_exceptions else 1
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(self.retryable_exceptions),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "payment_provider_retry",
                        provider=self.provider,
                        call=getattr(fn, "__qualname__", str(fn)),
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await anyio.to_thread.run_sync(call)

    # Helpers
    @staticmethod
    def _to_minor(amount: Decimal, currency: str) -> int:
        # Stripe expects amounts in the smallest currency unit
        return to_minor_units(amount, currency)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
