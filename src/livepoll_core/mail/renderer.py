"""EmailRenderer — Jinja2-based renderer for transactional emails.

Loads templates from the ``template/`` directory.  Every message has an
HTML and a plain-text body, rendered from ``<name>.html.jinja2`` and
``<name>.txt.jinja2``; the subject is fixed per message type.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import jinja2

# --- message-to-subject mapping ---
_SUBJECTS: dict[str, str] = {
    "verification_code": "Your verification code",
    "account_deletion": "Confirm account deletion",
}


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html: str
    text: str


class EmailRenderer:
    """Args:
        template_dir: optional override for the template directory.
            Defaults to ``template/`` sibling of this module.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        if template_dir is None:
            template_dir = Path(__file__).parent / "template"
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(enabled_extensions=("html.jinja2",)),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, name: str, **context) -> RenderedEmail:
        if name not in _SUBJECTS:
            raise ValueError(f"Unknown email template: {name}")
        html = self._env.get_template(f"{name}.html.jinja2").render(**context)
        text = self._env.get_template(f"{name}.txt.jinja2").render(**context)
        return RenderedEmail(subject=_SUBJECTS[name], html=html, text=text)

    def verification_code(self, *, code: str, purpose: str, valid_minutes: int) -> RenderedEmail:
        return self.render(
            "verification_code", code=code, purpose=purpose, valid_minutes=valid_minutes,
        )

    def account_deletion(self, *, link: str, valid_minutes: int) -> RenderedEmail:
        return self.render("account_deletion", link=link, valid_minutes=valid_minutes)
