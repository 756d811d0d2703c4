"""Result formatting and delivery."""

from .discord import DiscordNotifier, Notifier
from .formatter import format_error, format_summary

__all__ = ["Notifier", "DiscordNotifier", "format_summary", "format_error"]
