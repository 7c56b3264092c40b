"""
Outbound messaging integration package
======================================

Public API used by the notification dispatcher::

    from quote_engine.integrations.messaging import (
        LoggingGateway,
        MessagingError,
        MessagingGateway,
        OutboundMessage,
        WebhookGateway,
        get_gateway,
    )
"""

from quote_engine.integrations.messaging.gateway import (
    LoggingGateway,
    MessagingError,
    MessagingGateway,
    OutboundMessage,
    WebhookGateway,
    get_gateway,
)

__all__ = [
    "LoggingGateway",
    "MessagingError",
    "MessagingGateway",
    "OutboundMessage",
    "WebhookGateway",
    "get_gateway",
]
