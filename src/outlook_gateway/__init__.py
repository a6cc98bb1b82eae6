"""Microsoft Graph gateway for Outlook mail, calendar and change notifications."""

__version__ = "0.1.0"
