"""Collaborator clients for the lead pipeline.

Imports are lazy so a process that only needs one collaborator does not
import the SDKs of the others.
"""

from typing import TYPE_CHECKING

# Lazy imports keyed by exported name
_LAZY_EXPORTS = {
    "ExaWebsetsClient": ".exa",
    "WebsetItem": ".exa",
    "WebsetStatus": ".exa",
    "InstantlyClient": ".instantly",
    "LeadContact": ".instantly",
    "CampaignAnalytics": ".instantly",
    "OpenAIClient": ".openai_client",
    "AIResponseError": ".openai_client",
    "SendGridNotifier": ".sendgrid",
    "NotificationError": ".sendgrid",
}

# For type checking, use actual imports
if TYPE_CHECKING:
    from .exa import ExaWebsetsClient, WebsetItem, WebsetStatus
    from .instantly import CampaignAnalytics, InstantlyClient, LeadContact
    from .openai_client import AIResponseError, OpenAIClient
    from .sendgrid import NotificationError, SendGridNotifier


def __getattr__(name: str):
    """Module-level __getattr__ for lazy imports."""
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


__all__ = list(_LAZY_EXPORTS)
