"""Call dispatch: envelopes, per-call state and the retry policy."""

import asyncio
import itertools
import logging
from dataclasses import dataclass, replace
from enum import StrEnum, auto
from typing import TYPE_CHECKING

from .errors import CallFailure, CallStateError, Timeout, TransportUnavailable
from .principal import Principal
from .types import CallMode

if TYPE_CHECKING:
    from .transport import Transport

logger = logging.getLogger(__name__)

_call_ids = itertools.count(1)


def next_call_id() -> int:
    return next(_call_ids)


@dataclass(frozen=True, slots=True)
class CallEnvelope:
    """One in-flight call: where it goes, what it carries and who sends it."""

    call_id: int
    service: str
    method: str
    args: bytes
    mode: CallMode
    sender: Principal

    def retried(self) -> "CallEnvelope":
        """Return a fresh envelope with the same payload and a new call id."""
        return replace(self, call_id=next_call_id())


class CallState(StrEnum):
    """Lifecycle of a single call attempt."""

    IDLE = auto()
    SENT = auto()
    SUCCEEDED = auto()
    FAILED = auto()


_TRANSITIONS: dict[CallState, frozenset[CallState]] = {
    CallState.IDLE: frozenset({CallState.SENT, CallState.FAILED}),
    CallState.SENT: frozenset({CallState.SUCCEEDED, CallState.FAILED}),
    CallState.SUCCEEDED: frozenset(),
    CallState.FAILED: frozenset(),
}


class Call:
    """A single attempt at delivering an envelope.

    A call moves from IDLE to SENT, then to SUCCEEDED or FAILED. Terminal
    states are final: a retry is a new Call with a new envelope.

    Abandoning a call (cancelling the awaiting task) is always allowed. For
    a query nothing is observable remotely; for an update the remote state
    may or may not have changed, and nothing here can tell which.
    """

    def __init__(self, envelope: CallEnvelope) -> None:
        self.envelope = envelope
        self.state = CallState.IDLE
        self.error: BaseException | None = None

    @property
    def done(self) -> bool:
        return not _TRANSITIONS[self.state]

    def _transition(self, state: CallState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise CallStateError(f"Call {self.envelope.call_id}: {self.state} -> {state} is not allowed")
        self.state = state

    def _fail(self, error: BaseException) -> None:
        self.error = error
        self._transition(CallState.FAILED)

    async def run(self, transport: "Transport", timeout: float | None) -> bytes:
        """Send the envelope and wait for the raw reply."""
        envelope = self.envelope
        self._transition(CallState.SENT)
        logger.debug(
            "Sending %s %s.%s (call %d, %d bytes)",
            envelope.mode,
            envelope.service,
            envelope.method,
            envelope.call_id,
            len(envelope.args),
        )
        try:
            reply = await asyncio.wait_for(transport.send(envelope), timeout)
        except TimeoutError:
            error = Timeout(
                f"{envelope.service}.{envelope.method} got no reply within {timeout}s"
            )
            self._fail(error)
            raise error from None
        except CallFailure as e:
            self._fail(e)
            raise
        except OSError as e:
            error = TransportUnavailable(f"{envelope.service}.{envelope.method}: {e}")
            self._fail(error)
            raise error from e
        except asyncio.CancelledError as e:
            self._fail(e)
            if envelope.mode == CallMode.UPDATE:
                logger.warning(
                    "Abandoned update call %s.%s (call %d); the remote effect is indeterminate",
                    envelope.service,
                    envelope.method,
                    envelope.call_id,
                )
            raise
        except Exception as e:
            error = CallFailure(
                f"{envelope.service}.{envelope.method} failed: {type(e).__name__}: {e}"
            )
            self._fail(error)
            raise error from e

        self._transition(CallState.SUCCEEDED)
        return reply


@dataclass(frozen=True)
class RetryPolicy:
    """When and how often a failed call may be sent again.

    Only TransportUnavailable and Timeout are retryable, and update calls are
    retried only with ``retry_updates=True``. The default makes one attempt.
    """

    max_attempts: int = 1
    backoff: float = 0.1
    retry_updates: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff < 0:
            raise ValueError("backoff must not be negative")

    def should_retry(self, envelope: CallEnvelope, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if not isinstance(error, (TransportUnavailable, Timeout)):
            return False
        return envelope.mode == CallMode.QUERY or self.retry_updates

    def delay(self, attempt: int) -> float:
        """Seconds to wait before attempt ``attempt + 1``."""
        return self.backoff * 2 ** (attempt - 1)


class Dispatcher:
    """Sends envelopes over a transport and returns raw replies.

    The dispatcher keeps no state between invocations; every invocation owns
    its envelopes and Call objects, so it may be used concurrently.
    """

    def __init__(
        self,
        transport: "Transport",
        *,
        identity: Principal | None = None,
        timeout: float | None = 30.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self._transport = transport
        self._identity = identity or Principal.anonymous()
        self._timeout = timeout
        self._retry = retry or RetryPolicy()

    @property
    def identity(self) -> Principal:
        return self._identity

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    def envelope(self, service: str, method: str, args: bytes, mode: CallMode) -> CallEnvelope:
        """Build an envelope sent as this dispatcher's identity."""
        return CallEnvelope(
            call_id=next_call_id(),
            service=service,
            method=method,
            args=args,
            mode=mode,
            sender=self._identity,
        )

    async def invoke(self, envelope: CallEnvelope) -> bytes:
        """Deliver ``envelope`` and return the raw reply bytes.

        Raises:
            TransportUnavailable: the remote could not be reached.
            Timeout: no reply arrived in time.
            RemoteRejected: the remote answered with an error.
            CallFailure: the transport failed in any other way.
        """
        attempt = 1
        while True:
            call = Call(envelope)
            try:
                return await call.run(self._transport, self._timeout)
            except CallFailure as e:
                if not self._retry.should_retry(envelope, e, attempt):
                    raise
                delay = self._retry.delay(attempt)
                logger.warning(
                    "Retrying %s.%s after %s: %s (attempt %d of %d, waiting %.2fs)",
                    envelope.service,
                    envelope.method,
                    type(e).__name__,
                    e,
                    attempt + 1,
                    self._retry.max_attempts,
                    delay,
                )
            await asyncio.sleep(delay)
            envelope = envelope.retried()
            attempt += 1
