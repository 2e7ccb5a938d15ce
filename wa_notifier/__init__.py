"""WhatsApp top 3 email notifier."""

__version__ = "0.1.0"
