from .client import LoggingMessagingClient, MessagingClient, TwilioMessagingClient, whatsapp_address

__all__ = [
    "LoggingMessagingClient",
    "MessagingClient",
    "TwilioMessagingClient",
    "whatsapp_address",
]
