from listing_watch.notifications.base import Notifier
from listing_watch.notifications.discord import DiscordNotifier

__all__ = ["DiscordNotifier", "Notifier"]
