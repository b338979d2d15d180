"""gridsync: reconcile SendGrid subusers and API keys with declared state."""

__version__ = "0.1.0"
