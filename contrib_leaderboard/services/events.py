from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class IdentityUpdated:
    """A user's GitHub/GitLab identity was written to their profile meta."""

    user_id: str


IdentityHandler = Callable[[IdentityUpdated], Awaitable[None]]


class IdentityEvents:
    """In-process publish/subscribe for identity updates.

    Handlers run in subscription order. A failing handler is logged and
    does not fail the publisher or the remaining handlers.
    """

    def __init__(self) -> None:
        self._handlers: list[IdentityHandler] = []

    def subscribe(self, handler: IdentityHandler) -> None:
        self._handlers.append(handler)

    async def publish(self, event: IdentityUpdated) -> None:
        for handler in self._handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Identity event handler failed",
                    user_id=event.user_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )
