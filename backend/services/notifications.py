"""Best-effort delivery of notification emails."""

import logging
from typing import Awaitable, Callable

from backend.errors import UpstreamError

logger = logging.getLogger(__name__)


async def deliver(kind: str, send: Callable[..., Awaitable[None]], *args) -> bool:
    """Await ``send(*args)``; failures are logged and never reach the caller.

    Returns True if the email was handed to the provider.
    """
    try:
        await send(*args)
        return True
    except UpstreamError as e:
        logger.warning("%s email not sent: %s", kind, e.message)
    except Exception:
        logger.exception("%s email not sent", kind)
    return False
