from __future__ import annotations

import asyncio
from typing import AsyncIterator

import structlog

from shipwright.broker.base import BrokerMessage, LogBroker
from shipwright.core.constants import LOG_TOPIC_PATTERN
from shipwright.core.exceptions import BrokerError
from shipwright.gateway.hub import SubscriptionHub
from shipwright.resilience.retry import RetryPolicy

logger = structlog.get_logger(__name__)


class BrokerBridge:
    """Feed one broker pattern subscription into a :class:`SubscriptionHub`.

    The gateway holds a single subscription for every log topic instead of
    one per client. When the broker drops it, the bridge re-subscribes with
    exponential backoff; messages published in the gap are lost, which is
    within the at-most-once contract of the log stream.
    """

    def __init__(
        self,
        broker: LogBroker,
        hub: SubscriptionHub,
        *,
        pattern: str = LOG_TOPIC_PATTERN,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._broker = broker
        self._hub = hub
        self._pattern = pattern
        self._retry = retry_policy or RetryPolicy(backoff_base=1.0, backoff_max=30.0)
        self._task: asyncio.Task[None] | None = None
        self.forwarded = 0
        self.reconnects = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Subscribe and start forwarding.

        The subscription is in place when this returns; a failure to
        subscribe the first time propagates to the caller.
        """
        if self.running:
            return
        stream = await self._broker.subscribe(self._pattern)
        self._task = asyncio.create_task(self._run(stream), name="gateway-broker-bridge")
        logger.info("bridge_started", pattern=self._pattern)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("bridge_stopped", forwarded=self.forwarded)

    async def _run(self, stream: AsyncIterator[BrokerMessage] | None) -> None:
        attempt = 0
        while True:
            if stream is None:
                try:
                    stream = await self._broker.subscribe(self._pattern)
                except BrokerError as exc:
                    await self._backoff(attempt, exc)
                    attempt += 1
                    continue
                self.reconnects += 1
                logger.info("bridge_resubscribed", pattern=self._pattern, attempt=attempt)
            try:
                async for message in stream:
                    attempt = 0
                    self.forwarded += 1
                    self._hub.publish(message.topic, message.data)
            except BrokerError as exc:
                stream = None
                await self._backoff(attempt, exc)
                attempt += 1
                continue
            logger.info("bridge_stream_ended", pattern=self._pattern)
            return

    async def _backoff(self, attempt: int, exc: BrokerError) -> None:
        delay = self._retry.compute_delay(attempt)
        logger.warning(
            "bridge_subscription_lost",
            pattern=self._pattern,
            attempt=attempt + 1,
            delay=round(delay, 3),
            error=str(exc),
        )
        await asyncio.sleep(delay)
