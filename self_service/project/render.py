"""
Manifest template rendering.

Templates are plain YAML text with flat placeholders such as
``{{ __PROJECT_NAME__ }}``. Substitution is textual; the text is never parsed
here, so a rendered document is validated only when it is applied.
"""

from typing import List, Mapping
import logging
import re

from ..errors import RenderError

logger = logging.getLogger(__name__)

# {{ __NAME__ }} with optional whitespace inside the braces
PLACEHOLDER = re.compile(r"\{\{\s*(__[A-Z0-9_]+__)\s*\}\}")

DOCUMENT_SEPARATOR = re.compile(r"^---[ \t]*$", re.MULTILINE)


def render(template: str, context: Mapping[str, str]) -> str:
    """
    Substitute every placeholder in ``template`` from ``context``.

    Raises:
        RenderError: If a placeholder has no binding in ``context``
    """
    def substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in context:
            raise RenderError(key, template)
        return str(context[key])

    return PLACEHOLDER.sub(substitute, template)


def split_documents(text: str) -> List[str]:
    """Split multi-document YAML on ``---`` lines, dropping empty documents."""
    return [doc for doc in DOCUMENT_SEPARATOR.split(text) if doc.strip()]
