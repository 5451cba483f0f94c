from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional, TypeVar
import asyncio
import logging

from draftsync.core.config import settings
from draftsync.core.exceptions import ConflictError, DraftSyncError, TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AttemptOutcome(Enum):
    """Исходы одной попытки записи"""
    SUCCESS = "success"
    CONFLICT = "conflict"              # перечитать состояние и применить заново
    TRANSIENT_FAIL = "transient_fail"  # подождать и повторить
    GIVE_UP = "give_up"                # попытки исчерпаны, ошибка наружу


@dataclass
class AttemptRecord:
    attempt: int
    outcome: AttemptOutcome
    delay_ms: int = 0
    error: Optional[str] = None


@dataclass
class RetryTrace:
    label: str
    records: List[AttemptRecord] = field(default_factory=list)

    @property
    def attempts(self) -> int:
        return len([record for record in self.records if record.outcome != AttemptOutcome.GIVE_UP])


class WriteRetry:
    """
    Конечный автомат записи с оптимистичной блокировкой:
    Attempt -> Success | Conflict(refetch, reapply) | TransientFail(backoff, retry) | GiveUp.

    Функция попытки получает флаг refetch: на повторных попытках она обязана
    перечитать состояние из хранилища и пересчитать изменения от свежей базы.
    """

    def __init__(
        self,
        max_attempts: int = settings.max_write_attempts,
        base_delay_ms: int = settings.retry_base_delay_ms,
        timeout_seconds: float = settings.remote_timeout_seconds,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self.last_trace: Optional[RetryTrace] = None

    def backoff_ms(self, attempt: int) -> int:
        """Задержка перед повтором после попытки номер attempt: 100, 200, 400 мс...

        При max_attempts=3 (попыток всего, а не повторов) ожидания только 100 и 200 мс,
        шаг 400 мс наступает лишь при max_attempts >= 4.
        """
        return self.base_delay_ms * 2 ** (attempt - 1)

    async def run(self, attempt_fn: Callable[[bool], Awaitable[T]], label: str = "write") -> T:
        trace = RetryTrace(label=label)
        self.last_trace = trace
        last_error: Optional[DraftSyncError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await asyncio.wait_for(attempt_fn(attempt > 1), timeout=self.timeout_seconds)
            except ConflictError as exc:
                outcome, last_error = AttemptOutcome.CONFLICT, exc
            except asyncio.TimeoutError:
                outcome = AttemptOutcome.TRANSIENT_FAIL
                last_error = TransientIOError(f"{label} timed out after {self.timeout_seconds}s")
            except TransientIOError as exc:
                outcome, last_error = AttemptOutcome.TRANSIENT_FAIL, exc
            else:
                trace.records.append(AttemptRecord(attempt, AttemptOutcome.SUCCESS))
                if attempt > 1:
                    logger.info(f"{label} succeeded after {attempt} attempts")
                return result

            if attempt == self.max_attempts:
                trace.records.append(AttemptRecord(attempt, outcome, error=str(last_error)))
                break

            delay_ms = self.backoff_ms(attempt)
            trace.records.append(AttemptRecord(attempt, outcome, delay_ms, str(last_error)))
            logger.warning(
                f"{label}: {outcome.value} on attempt {attempt}/{self.max_attempts}, "
                f"retrying in {delay_ms}ms"
            )
            await self._sleep(delay_ms / 1000)

        trace.records.append(AttemptRecord(self.max_attempts, AttemptOutcome.GIVE_UP, error=str(last_error)))
        logger.error(f"{label} failed after {self.max_attempts} attempts: {last_error}")

        if isinstance(last_error, ConflictError):
            raise ConflictError(
                "Draft was modified elsewhere, reload to see the latest version",
                last_error.draft_id, last_error.expected_version, last_error.actual_version
            ) from last_error
        raise TransientIOError(
            f"{label} failed after {self.max_attempts} attempts: {last_error}",
            getattr(last_error, "draft_id", None)
        ) from last_error
