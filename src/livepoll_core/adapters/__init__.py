"""Concrete adapters for the SDK's external collaborators."""

from livepoll_core.adapters.openai_classifier import OpenAIModerationClassifier
from livepoll_core.adapters.resend_mailer import ResendEmailSender
from livepoll_core.adapters.supabase_storage import SupabaseObjectStore

__all__ = [
    "OpenAIModerationClassifier",
    "ResendEmailSender",
    "SupabaseObjectStore",
]
