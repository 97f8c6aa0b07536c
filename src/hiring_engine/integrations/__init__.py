"""
Collaborator interfaces and their HTTP adapters.
"""

from hiring_engine.integrations.collaborators import (
    ChatService,
    CompanyGate,
    GatedAction,
    HttpChatService,
    HttpCompanyGate,
    HttpJobDirectory,
    HttpNotificationService,
    JobDirectory,
    NotificationService,
)

__all__ = [
    "ChatService",
    "CompanyGate",
    "GatedAction",
    "JobDirectory",
    "NotificationService",
    "HttpChatService",
    "HttpCompanyGate",
    "HttpJobDirectory",
    "HttpNotificationService",
]
