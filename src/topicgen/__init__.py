"""topicgen -- topic proposal generation from analyst-flagged news items."""

__version__ = "0.1.0"
