"""
Frontmatter codec for the Jane document server.

A document file is a `---` delimited YAML block followed by a blank line and
the markdown body. `parse_frontmatter(render_document(meta, body))` gives back
exactly `(meta, body)`.
"""

from typing import Any

import yaml
from pydantic import ValidationError

from .errors import MalformedDocumentError
from .models import DocumentMeta
from .utils import FRONTMATTER_PATTERN, format_timestamp, normalize_newlines

DELIMITER = "---"
BODY_SEPARATOR = "\n\n"


def parse_frontmatter(raw: str) -> tuple[DocumentMeta, str]:
    """Split a document into its metadata and body.

    The closing delimiter line and at most one blank line after it are
    consumed; everything else belongs to the body.

    Raises:
        MalformedDocumentError: If the block is missing, is not a YAML
            mapping, or lacks title/createdAt/updatedAt
    """
    text = normalize_newlines(raw)

    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        raise MalformedDocumentError("Document has no frontmatter block")

    try:
        data = yaml.safe_load(match.group(1) or "")
    except yaml.YAMLError as e:
        raise MalformedDocumentError(f"Frontmatter is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise MalformedDocumentError("Frontmatter must be a mapping of fields")

    missing = [key for key in ("title", "createdAt", "updatedAt") if data.get(key) in (None, "")]
    if missing:
        raise MalformedDocumentError(f"Frontmatter is missing required fields: {', '.join(missing)}")

    try:
        meta = DocumentMeta.model_validate(data)
    except ValidationError as e:
        raise MalformedDocumentError(f"Frontmatter fields are invalid: {e.error_count()} error(s)") from e

    body = text[match.end():]
    if body.startswith("\n"):
        body = body[1:]
    return meta, body


def _frontmatter_fields(meta: DocumentMeta) -> dict[str, Any]:
    fields: dict[str, Any] = {"title": meta.title}
    if meta.description is not None:
        fields["description"] = meta.description
    if meta.author is not None:
        fields["author"] = meta.author
    if meta.tags is not None:
        fields["tags"] = list(meta.tags)
    fields["createdAt"] = format_timestamp(meta.created_at)
    fields["updatedAt"] = format_timestamp(meta.updated_at)
    for key, value in meta.extras.items():
        fields.setdefault(key, value)
    return fields


def generate_frontmatter(meta: DocumentMeta) -> str:
    """Serialize metadata as a delimited YAML block (no trailing newline).

    Timestamps are written as strings; PyYAML quotes them so they load back
    as strings and are re-parsed by the model.
    """
    yaml_content = yaml.safe_dump(
        _frontmatter_fields(meta),
        allow_unicode=True,
        default_flow_style=False,
        sort_keys=False,
    )
    return f"{DELIMITER}\n{yaml_content}{DELIMITER}"


def render_document(meta: DocumentMeta, body: str) -> str:
    """Full file text for a document."""
    return generate_frontmatter(meta) + BODY_SEPARATOR + normalize_newlines(body)
