"""
Email Template Renderer using Handlebars (pybars3).

Templates live in invitehub/templates/email/. Each content template is wrapped
in base.hbs, which receives the rendered content as {{{body}}}.
"""

from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pybars import Compiler

from invitehub.config import settings

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates" / "email"


@lru_cache(maxsize=20)
def _load_template(template_dir: Path, name: str) -> str:
    """Load a template file from disk (cached)."""
    template_path = template_dir / f"{name}.hbs"
    if not template_path.exists():
        raise FileNotFoundError(f"Template not found: {template_path}")
    return template_path.read_text(encoding="utf-8")


class EmailTemplateRenderer:
    """
    Renders email templates using Handlebars (pybars3).

    Usage:
        renderer = EmailTemplateRenderer()
        html = renderer.render("invitation", {
            "email": "a@x.com",
            "accept_url": "https://app/invite/accept?token=...",
            "expires_at": "2026-01-01 12:00 UTC",
        })
    """

    def __init__(self, template_dir: Optional[Path] = None, app_url: Optional[str] = None):
        self.template_dir = template_dir or TEMPLATE_DIR
        self.compiler = Compiler()
        self.app_url = app_url or settings.FRONTEND_BASE_URL
        self._compiled: Dict[str, Any] = {}

    def _compile(self, name: str):
        if name not in self._compiled:
            self._compiled[name] = self.compiler.compile(_load_template(self.template_dir, name))
        return self._compiled[name]

    def render(self, template_name: str, context: Dict[str, Any], subject: str = "") -> str:
        """
        Render an email template with the given context.

        Raises:
            FileNotFoundError: If template file not found
        """
        full_context = {
            **context,
            "app_name": settings.APP_NAME,
            "app_url": self.app_url,
            "year": datetime.now(timezone.utc).year,
            "subject": subject,
        }

        rendered_content = self._compile(template_name)(full_context)

        full_context["body"] = rendered_content
        return str(self._compile("base")(full_context))
