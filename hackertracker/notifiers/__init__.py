from .breakdown import ReputationBreakdown, calculate_rep_breakdown
from .discord import DiscordWebhook, LogNotifier, parse_webhook_url
from .render import EmbedColors, render_change, render_item

__all__ = [
    "DiscordWebhook",
    "EmbedColors",
    "LogNotifier",
    "ReputationBreakdown",
    "calculate_rep_breakdown",
    "parse_webhook_url",
    "render_change",
    "render_item",
]
