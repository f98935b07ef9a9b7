import asyncio
import time
from typing import Awaitable, TypeVar

import httpx

from homework_validator.interview.errors import GenerationError, InterviewError, TransientNetworkError
from homework_validator.metrics import GENERATION_SECONDS

T = TypeVar("T")


async def bounded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await a collaborator call under a hard timeout.

    Timeouts and provider failures come out as GenerationError, transport
    failures as TransientNetworkError. Interview errors raised by the
    collaborator (e.g. ValidationError) pass through unchanged.
    """
    t0 = time.perf_counter()
    outcome = "error"
    try:
        result = await asyncio.wait_for(awaitable, timeout=timeout)
        outcome = "ok"
        return result
    except asyncio.TimeoutError as e:
        outcome = "timeout"
        raise GenerationError(f"{operation} timed out after {timeout:g}s") from e
    except httpx.TransportError as e:
        raise TransientNetworkError(f"{operation} failed: {type(e).__name__}") from e
    except InterviewError:
        raise
    except Exception as e:
        raise GenerationError(f"{operation} failed: {e}") from e
    finally:
        GENERATION_SECONDS.labels(operation=operation, outcome=outcome).observe(time.perf_counter() - t0)
