"""トークンバケット方式の送信許可制御。"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from saasgate.config import DEFAULT_LIMITER_CONFIG, LimiterConfig
from saasgate.validation import validate_limiter_config

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LimiterStats:
    """リミッタの現在値。

    Attributes:
        queued: 許可待ちの件数。
        running: 許可済みで実行中の件数。
        reservoir_remaining: リザーバ残量。
        done: 完了（成功・失敗を問わない）件数。
    """

    queued: int
    running: int
    reservoir_remaining: int
    done: int


class TokenBucketLimiter:
    """同時実行数・最小間隔・リザーバで送信を制御するリミッタ。

    ``chained`` を指定すると、自身の許可を得た後に連結先リミッタの許可も
    得てからタスク本体を実行する。自身の枠は連結先での待機中も保持される。

    状態はイベントループ上でのみ変更されるため、同一ループ内ではロック不要。
    """

    def __init__(
        self,
        config: LimiterConfig = DEFAULT_LIMITER_CONFIG,
        *,
        name: str = "global",
        chained: TokenBucketLimiter | None = None,
    ) -> None:
        self._config = validate_limiter_config(config)
        self._name = name
        self._chained = chained
        self._min_interval = config.min_time_ms / 1000.0
        self._refresh_interval = config.reservoir_refresh_interval_ms / 1000.0
        self._reservoir = config.reservoir
        self._running = 0
        self._done = 0
        self._last_dispatch: float | None = None
        self._next_refill: float | None = None
        if self._refresh_interval > 0 and config.reservoir_refresh_amount > 0:
            self._next_refill = time.monotonic() + self._refresh_interval
        self._queue: deque[asyncio.Future[None]] = deque()
        self._wake: asyncio.TimerHandle | None = None
        self._wake_loop: asyncio.AbstractEventLoop | None = None

    @property
    def name(self) -> str:
        """リミッタ名。"""

        return self._name

    @property
    def config(self) -> LimiterConfig:
        """リミッタ設定。"""

        return self._config

    @property
    def chained(self) -> TokenBucketLimiter | None:
        """連結先リミッタ。"""

        return self._chained

    async def schedule(self, task: Callable[[], Awaitable[T]]) -> T:
        """許可を待ってタスクを実行する。

        Args:
            task: 引数なしで awaitable を返す呼び出し可能オブジェクト。

        Returns:
            タスクの戻り値。

        Raises:
            Exception: タスクが送出した例外をそのまま再送出する。
        """

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self._queue.append(waiter)
        self._dispatch()
        try:
            await waiter
        except asyncio.CancelledError:
            # 許可済みで取消された場合は枠を返す
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise
        try:
            if self._chained is not None:
                return await self._chained.schedule(task)
            return await task()
        finally:
            self._release()

    def stats(self) -> LimiterStats:
        """現在の件数を返す。状態は変更しない。"""

        reservoir, _ = self._projected_reservoir(time.monotonic())
        queued = sum(1 for waiter in self._queue if not waiter.done())
        return LimiterStats(
            queued=queued,
            running=self._running,
            reservoir_remaining=reservoir,
            done=self._done,
        )

    def _projected_reservoir(self, now: float) -> tuple[int, float | None]:
        if self._next_refill is None or now < self._next_refill:
            return self._reservoir, self._next_refill
        periods = int((now - self._next_refill) // self._refresh_interval) + 1
        refilled = self._reservoir + periods * self._config.reservoir_refresh_amount
        return (
            min(self._config.reservoir, refilled),
            self._next_refill + periods * self._refresh_interval,
        )

    def _dispatch(self) -> None:
        now = time.monotonic()
        self._reservoir, self._next_refill = self._projected_reservoir(now)
        max_concurrent = self._config.max_concurrent
        while self._queue:
            waiter = self._queue[0]
            if waiter.done():
                self._queue.popleft()
                continue
            if max_concurrent and self._running >= max_concurrent:
                return
            if self._reservoir <= 0:
                if self._next_refill is not None:
                    self._arm(self._next_refill - now)
                return
            if self._last_dispatch is not None and self._min_interval > 0:
                ready_at = self._last_dispatch + self._min_interval
                if now < ready_at:
                    self._arm(ready_at - now)
                    return
            self._queue.popleft()
            self._reservoir -= 1
            self._running += 1
            self._last_dispatch = now
            waiter.set_result(None)
            logger.debug(
                "limiter=%s dispatched running=%d reservoir=%d",
                self._name,
                self._running,
                self._reservoir,
            )

    def _release(self) -> None:
        self._running -= 1
        self._done += 1
        self._dispatch()

    def _arm(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        when = loop.time() + max(0.0, delay)
        if self._wake is not None:
            if self._wake_loop is loop and not self._wake.cancelled() and self._wake.when() <= when:
                return
            self._wake.cancel()
        self._wake = loop.call_at(when, self._on_wake)
        self._wake_loop = loop

    def _on_wake(self) -> None:
        self._wake = None
        self._wake_loop = None
        self._dispatch()

    def __repr__(self) -> str:
        chained = f", chained={self._chained.name!r}" if self._chained is not None else ""
        return f"TokenBucketLimiter(name={self._name!r}, config={self._config!r}{chained})"
