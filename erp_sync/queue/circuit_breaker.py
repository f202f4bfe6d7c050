import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from tortoise import timezone
from tortoise.exceptions import IntegrityError

from erp_sync.core.config import CIRCUIT_COOLDOWN, CIRCUIT_FAILURE_THRESHOLD, CIRCUIT_FAILURE_WINDOW
from erp_sync.core.exceptions import CircuitOpenError
from erp_sync.models.circuit_breaker import CircuitBreakerState, CircuitState

log = logging.getLogger("circuit_breaker")

# Attempts at an optimistic write before giving up on it
CAS_RETRIES = 3


class CircuitBreaker:
    """
    Fail-fast guard for ERP calls, persisted so every worker process shares it.

    CLOSED: calls pass, failures are counted inside a rolling window.
    OPEN: calls are rejected until the cooldown has elapsed.
    HALF_OPEN: one probe call is let through; its outcome closes or reopens.

    Every write is a compare-and-swap on the row version. Losing the race is
    tolerated: the state is advisory and the next call re-reads it.
    """

    def __init__(
        self,
        name: str = "erp",
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        failure_window: int = CIRCUIT_FAILURE_WINDOW,
        cooldown: int = CIRCUIT_COOLDOWN,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.failure_window = failure_window
        self.cooldown = cooldown
        self._clock = clock or timezone.now

    async def _load(self) -> CircuitBreakerState:
        state = await CircuitBreakerState.get_or_none(name=self.name)
        if state is not None:
            return state
        try:
            return await CircuitBreakerState.create(name=self.name)
        except IntegrityError:
            # Created concurrently by another process
            return await CircuitBreakerState.get(name=self.name)

    async def _swap(self, current: CircuitBreakerState, **changes) -> bool:
        updated = await CircuitBreakerState.filter(
            name=self.name, version=current.version
        ).update(version=current.version + 1, updated_at=timezone.now(), **changes)
        return updated == 1

    async def check(self) -> None:
        """Raises CircuitOpenError if the ERP must not be called right now."""
        state = await self._load()
        if state.state != CircuitState.OPEN:
            return

        now = self._clock()
        if state.opened_at is not None and (now - state.opened_at).total_seconds() < self.cooldown:
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open; ERP unavailable",
                {"opened_at": state.opened_at.isoformat(), "failure_count": state.failure_count},
            )

        if not await self._swap(state, state=CircuitState.HALF_OPEN):
            raise CircuitOpenError(f"Circuit '{self.name}' probe already in progress")
        log.info(f"Circuit '{self.name}' half-open, allowing a probe call")

    async def record_success(self) -> None:
        for _ in range(CAS_RETRIES):
            state = await self._load()
            if state.state == CircuitState.HALF_OPEN:
                changes = {
                    "state": CircuitState.CLOSED,
                    "failure_count": 0,
                    "last_failure_at": None,
                    "opened_at": None,
                }
            elif state.state == CircuitState.CLOSED and state.failure_count > 0:
                changes = {"failure_count": 0}
            else:
                return

            if await self._swap(state, **changes):
                if state.state == CircuitState.HALF_OPEN:
                    log.info(f"Circuit '{self.name}' closed, ERP recovered")
                return
        log.warning(f"Circuit '{self.name}': gave up recording success after {CAS_RETRIES} conflicts")

    async def record_failure(self) -> None:
        for _ in range(CAS_RETRIES):
            state = await self._load()
            now = self._clock()

            if state.state == CircuitState.HALF_OPEN:
                changes = {
                    "state": CircuitState.OPEN,
                    "failure_count": state.failure_count + 1,
                    "last_failure_at": now,
                    "opened_at": now,
                }
            else:
                failure_count = state.failure_count
                if (
                    state.last_failure_at is not None
                    and (now - state.last_failure_at).total_seconds() > self.failure_window
                ):
                    failure_count = 0  # Previous failures fell out of the window
                failure_count += 1
                changes = {"failure_count": failure_count, "last_failure_at": now}
                if state.state == CircuitState.CLOSED and failure_count >= self.failure_threshold:
                    changes["state"] = CircuitState.OPEN
                    changes["opened_at"] = now

            if await self._swap(state, **changes):
                if changes.get("state") == CircuitState.OPEN:
                    log.error(
                        f"Circuit '{self.name}' opened after {changes['failure_count']} failure(s); "
                        f"cooling down for {self.cooldown}s"
                    )
                return
        log.warning(f"Circuit '{self.name}': gave up recording failure after {CAS_RETRIES} conflicts")

    async def status(self) -> Dict[str, Any]:
        state = await self._load()
        return {
            "name": self.name,
            "state": state.state.value,
            "is_healthy": state.state == CircuitState.CLOSED,
            "failure_count": state.failure_count,
            "last_failure": state.last_failure_at.isoformat() if state.last_failure_at else None,
            "opened_at": state.opened_at.isoformat() if state.opened_at else None,
        }

    async def reset(self) -> None:
        """Forces the circuit closed (operator action)."""
        state = await self._load()
        await CircuitBreakerState.filter(name=self.name).update(
            state=CircuitState.CLOSED,
            failure_count=0,
            last_failure_at=None,
            opened_at=None,
            version=state.version + 1,
            updated_at=timezone.now(),
        )
        log.info(f"Circuit '{self.name}' manually reset to closed")
