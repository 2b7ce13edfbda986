"""HTTP clients for the external platforms the engine talks to."""

from .base import PostSender, SendResult, ViewerCountSource, WebhookChannel
from .discord_webhook import DiscordWebhookChannel
from .twitch import StreamDetails, TwitchHelixClient
from .x import XPostSender

__all__ = [
    "DiscordWebhookChannel",
    "PostSender",
    "SendResult",
    "StreamDetails",
    "TwitchHelixClient",
    "ViewerCountSource",
    "WebhookChannel",
    "XPostSender",
]
