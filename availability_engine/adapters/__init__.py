"""
Adapters layer - External calendar integrations (Google Calendar, Microsoft Graph).
"""

from .google_calendar import GoogleCalendarClient
from .graph_authenticator import GraphAuthenticator
from .graph_client import GraphClient
from .mock_calendar import MockCalendarClient

__all__ = ["GoogleCalendarClient", "GraphAuthenticator", "GraphClient", "MockCalendarClient"]
