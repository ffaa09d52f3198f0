"""Python client for a running ImageHive server.

Modules
-------
consumer
    Stream consumer with the two-tier fallback, and ``Conversation``.
cli
    ``imagehive-chat`` terminal front end.
"""

from imagehive.client.consumer import (
    Conversation,
    ConversationBusyError,
    SendOutcome,
    SendState,
    StreamConsumer,
)

__all__ = [
    "Conversation",
    "ConversationBusyError",
    "SendOutcome",
    "SendState",
    "StreamConsumer",
]
