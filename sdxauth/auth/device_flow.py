"""Device authorization grant polling (RFC 8628).

DeviceFlowPoller drives the exchange loop once the provider has issued a
device code: it keeps exchanging the code until the user approves,
denies, or the code expires, widening the interval when the provider
answers ``slow_down``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time

from typing import TYPE_CHECKING, Generic, TypeVar

from ..exceptions import AuthFlowCancelled, AuthFlowTimeout, TransientProviderError
from ..types import DeviceAuthorization, DeviceFlowState, DeviceFlowStatus


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..types import Clock


logger = logging.getLogger("sdxauth.auth")

T = TypeVar("T")

DEVICE_CODE_EXPIRED = "Device code expired"


class DeviceFlowPoller(Generic[T]):
    """Polls a device-code exchange until it settles.

    The first exchange runs immediately; each ``authorization_pending``
    or ``slow_down`` answer (a TransientProviderError) is followed by a
    sleep of the current interval. ``slow_down`` widens the interval by
    ``slow_down_step`` seconds for the rest of the attempt.

    The device code lifetime is a hard deadline. It is enforced by a
    timer around the loop and by a clock check after every exchange, so
    a result that arrives after the deadline still ends the attempt with
    ``"Device code expired"``.

    Parameters
    ----------
    exchange : callable
        ``async exchange(device_code) -> T``. Raises TransientProviderError
        while the user has not finished, any other exception to stop.
    clock : callable, optional
        Returns the current epoch time in seconds (default ``time.time``).
    sleep : callable, optional
        ``async sleep(seconds)`` (default ``asyncio.sleep``).
    slow_down_step : int
        Seconds added to the interval on ``slow_down`` (default 5).
    on_state_change : callable, optional
        Called with every new DeviceFlowState.
    provider : str, optional
        Provider name used in errors and logs.
    """

    def __init__(
        self,
        exchange: Callable[[str], Awaitable[T]],
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        slow_down_step: int = 5,
        on_state_change: Callable[[DeviceFlowState], None] | None = None,
        provider: str | None = None,
    ) -> None:
        """Initialize the poller."""
        self._exchange = exchange
        self._clock: Clock = clock or time.time
        self._sleep = sleep or asyncio.sleep
        self.slow_down_step = slow_down_step
        self.on_state_change = on_state_change
        self.provider = provider

        self._state = DeviceFlowState()
        self._generation = 0
        self._task: asyncio.Task[T] | None = None

    @property
    def state(self) -> DeviceFlowState:
        """Current state of the polling attempt."""
        return self._state

    @property
    def active(self) -> bool:
        """Whether a polling loop is running."""
        return self._task is not None and not self._task.done()

    async def poll(self, authorization: DeviceAuthorization) -> T:
        """Poll until the device code is exchanged.

        Starting a new poll cancels any loop still running.

        Parameters
        ----------
        authorization : DeviceAuthorization
            The device authorization issued by the provider.

        Returns
        -------
        T
            Whatever the exchange returned on success.

        Raises
        ------
        AuthFlowTimeout
            If the device code expired first.
        AuthFlowCancelled
            If :meth:`cancel` was called while polling.
        AuthenticationError
            If the provider denied the request or the exchange failed.
        """
        self.cancel()
        self._generation += 1
        generation = self._generation
        deadline = self._clock() + authorization.expires_in

        self._set_state(
            generation,
            DeviceFlowState(
                status=DeviceFlowStatus.POLLING,
                user_code=authorization.user_code,
                verification_uri=authorization.verification_uri,
                verification_uri_complete=authorization.verification_uri_complete,
                expires_at=deadline,
                interval=authorization.interval,
            ),
        )
        logger.debug(
            "Device flow polling every %ss for up to %ss",
            authorization.interval,
            authorization.expires_in,
        )

        task = asyncio.create_task(self._run(generation, authorization, deadline))
        self._task = task
        try:
            return await asyncio.wait_for(task, timeout=authorization.expires_in)
        except AuthFlowTimeout:
            raise
        except asyncio.TimeoutError:
            self._update(generation, status=DeviceFlowStatus.ERROR, error=DEVICE_CODE_EXPIRED)
            raise AuthFlowTimeout(
                DEVICE_CODE_EXPIRED, timeout=authorization.expires_in, provider=self.provider
            ) from None
        except asyncio.CancelledError:
            if generation == self._generation:
                self.cancel()
                raise
            msg = "Device flow cancelled"
            raise AuthFlowCancelled(msg, provider=self.provider) from None
        finally:
            if self._task is task:
                self._task = None

    def cancel(self) -> None:
        """Stop the running loop and reset the state to idle.

        Results of the cancelled loop are discarded.
        """
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Device flow polling cancelled")
        if self._state.status is not DeviceFlowStatus.IDLE:
            self._state = DeviceFlowState()
            self._notify()

    async def _run(self, generation: int, authorization: DeviceAuthorization, deadline: float) -> T:
        interval = authorization.interval
        attempts = 0
        while True:
            attempts += 1
            try:
                result = await self._exchange(authorization.device_code)
            except TransientProviderError as exc:
                self._check_deadline(generation, deadline, authorization)
                if exc.slow_down:
                    interval += self.slow_down_step
                    logger.debug("Provider asked to slow down; polling every %ss", interval)
                self._update(generation, interval=interval, attempts=attempts)
                await self._sleep(interval)
                self._check_deadline(generation, deadline, authorization)
                continue
            except Exception as exc:
                self._update(
                    generation,
                    status=DeviceFlowStatus.ERROR,
                    attempts=attempts,
                    error=getattr(exc, "message", None) or str(exc),
                )
                raise

            self._check_deadline(generation, deadline, authorization)
            self._update(generation, status=DeviceFlowStatus.SUCCESS, attempts=attempts)
            logger.debug("Device flow succeeded after %d exchange(s)", attempts)
            return result

    def _check_deadline(
        self, generation: int, deadline: float, authorization: DeviceAuthorization
    ) -> None:
        if self._clock() < deadline:
            return
        self._update(generation, status=DeviceFlowStatus.ERROR, error=DEVICE_CODE_EXPIRED)
        raise AuthFlowTimeout(
            DEVICE_CODE_EXPIRED, timeout=authorization.expires_in, provider=self.provider
        )

    def _update(self, generation: int, **changes: object) -> None:
        self._set_state(generation, dataclasses.replace(self._state, **changes))  # type: ignore[arg-type]

    def _set_state(self, generation: int, state: DeviceFlowState) -> None:
        if generation != self._generation:
            return
        self._state = state
        self._notify()

    def _notify(self) -> None:
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(self._state)
        except Exception:
            logger.exception("Device flow state callback failed")
