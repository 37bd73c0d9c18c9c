"""Route decoded envelopes to handlers by type."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Coroutine, Union

logger = logging.getLogger(__name__)

# Handler type: async or sync function taking (device_id, envelope)
Handler = Union[
    Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]],
    Callable[[str, dict[str, Any]], None],
]


class MessageDispatcher:
    """Route envelopes to registered handlers by their type field.

    Unknown types are logged and ignored. Handler failures are logged and
    never propagate to the connection.
    """

    def __init__(self, handler_timeout: float = 10.0):
        """Initialize dispatcher.

        Args:
            handler_timeout: Maximum time for handler to complete (seconds).
        """
        self._handlers: dict[str, Handler] = {}
        self._handler_timeout = handler_timeout

    def register(self, message_type: str, handler: Handler) -> None:
        """Register a handler for a message type.

        Args:
            message_type: Envelope type (e.g., "register_device").
            handler: Async or sync function(device_id, envelope).
        """
        self._handlers[message_type] = handler
        logger.debug(f"Registered handler for: {message_type}")

    def has_handler(self, message_type: str) -> bool:
        """Check if handler exists for type."""
        return message_type in self._handlers

    def get_registered_types(self) -> list[str]:
        """Get list of registered message types."""
        return list(self._handlers.keys())

    async def dispatch(
        self,
        device_id: str,
        message_type: str | None,
        envelope: dict[str, Any],
    ) -> bool:
        """Dispatch envelope to the appropriate handler.

        Args:
            device_id: Sending device identifier.
            message_type: Envelope type for routing.
            envelope: The decoded envelope.

        Returns:
            True if a handler ran to completion, False otherwise.
        """
        handler = self._handlers.get(message_type) if message_type else None

        if handler is None:
            logger.warning(f"Unknown message type: {message_type}")
            return False

        try:
            if inspect.iscoroutinefunction(handler):
                await asyncio.wait_for(
                    handler(device_id, envelope), timeout=self._handler_timeout
                )
            else:
                handler(device_id, envelope)
            return True

        except asyncio.TimeoutError:
            logger.error(
                f"Handler timeout for {message_type} "
                f"(device={device_id}, timeout={self._handler_timeout}s)"
            )
        except Exception as e:
            logger.error(
                f"Handler error for {message_type} (device={device_id}): {e}"
            )
        return False
