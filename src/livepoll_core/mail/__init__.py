"""Email rendering for the account side channel."""

from livepoll_core.mail.renderer import EmailRenderer, RenderedEmail

__all__ = ["EmailRenderer", "RenderedEmail"]
