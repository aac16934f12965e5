"""Chat command telemetry decorator."""
from __future__ import annotations

import functools
import time
from typing import Any, Callable

from .telemetry import get_telemetry

# Outcomes that count as a successful command run
SUCCESS_OUTCOMES = frozenset({"sent", "menu"})


def track_command(func: Callable) -> Callable:
    """Decorator to track dispatcher command usage and performance.

    The wrapped coroutine receives ``(self, message, match)`` and returns an
    outcome label such as ``"sent"``, ``"no_image"`` or ``"blocked"``.
    """

    @functools.wraps(func)
    async def wrapper(self, message, match, *args, **kwargs) -> Any:
        telemetry = get_telemetry()
        command_name = match.name
        chat_id = message.chat_id
        start_time = time.time()
        outcome = None

        try:
            outcome = await func(self, message, match, *args, **kwargs)
            return outcome

        except Exception as e:
            outcome = "exception"
            telemetry.track_error(
                type(e).__name__,
                command=command_name,
                chat_id=chat_id,
                error_details=str(e)
            )
            raise

        finally:
            duration_ms = (time.time() - start_time) * 1000
            telemetry.track_command(
                command_name,
                chat_id,
                success=outcome in SUCCESS_OUTCOMES,
                duration_ms=duration_ms,
                outcome=outcome,
            )

    return wrapper
