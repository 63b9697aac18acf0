"""
Pydantic models for the Jane document server.

Contains the category union, document metadata, stored documents, the
search index projection and search results.
"""

from datetime import date, datetime, time, timezone
from typing import Annotated, Any, Literal, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import format_timestamp

DocumentKind = Literal["stdlib", "spec"]


class StdlibCategory(BaseModel):
    """Standard-library bucket for one programming language."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["stdlib"] = "stdlib"
    language: str

    @property
    def name(self) -> str:
        return self.language

    @property
    def scheme(self) -> str:
        return "stdlib"


class SpecCategory(BaseModel):
    """Specification bucket for one project."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["spec"] = "spec"
    project: str

    @property
    def name(self) -> str:
        return self.project

    @property
    def scheme(self) -> str:
        return "spec"


Category = Annotated[Union[StdlibCategory, SpecCategory], Field(discriminator="kind")]


def document_uri(category: StdlibCategory | SpecCategory, path: str) -> str:
    """Build the resource URI of a document, e.g. stdlib://python/list-methods.md."""
    return f"{category.scheme}://{quote(category.name, safe='')}/{quote(path)}"


def _as_utc(value: Any) -> Any:
    # YAML hands back date/datetime objects for unquoted timestamps
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    return value


class DocumentMeta(BaseModel):
    """Frontmatter metadata of a document.

    Unknown frontmatter keys are kept as extra fields so that a rewrite
    never drops them.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str
    description: str | None = None
    author: str | None = None
    tags: list[str] | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title cannot be empty")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        seen: list[str] = []
        for tag in value:
            tag = str(tag)
            if tag not in seen:
                seen.append(tag)
        return seen

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> Any:
        return _as_utc(value)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _require_timezone(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @model_validator(mode="after")
    def _check_chronology(self) -> "DocumentMeta":
        if self.updated_at < self.created_at:
            raise ValueError("updatedAt must not be earlier than createdAt")
        return self

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})


class MetaChanges(BaseModel):
    """Partial metadata for an update. Fields left as None keep their value."""

    title: str | None = None
    description: str | None = None
    author: str | None = None
    tags: list[str] | None = None

    def supplied(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Document(BaseModel):
    """A stored document: identity, metadata and markdown body."""

    category: Category
    path: str
    meta: DocumentMeta
    content: str

    @property
    def uri(self) -> str:
        return document_uri(self.category, self.path)

    def summary(self) -> dict[str, Any]:
        """Compact JSON-ready description used by the write tools."""
        return {
            "uri": self.uri,
            "type": self.category.kind,
            self._name_field(): self.category.name,
            "path": self.path,
            "title": self.meta.title,
            "description": self.meta.description,
            "author": self.meta.author,
            "tags": self.meta.tags or [],
            "createdAt": format_timestamp(self.meta.created_at),
            "updatedAt": format_timestamp(self.meta.updated_at),
        }

    def _name_field(self) -> str:
        return "language" if self.category.kind == "stdlib" else "project"


class SearchableDocument(BaseModel):
    """Denormalized, case-folded projection of a document held in the index."""

    model_config = ConfigDict(frozen=True)

    category: Category
    path: str
    title: str
    description: str
    tags: tuple[str, ...]
    content: str
    updated_at: datetime
    title_folded: str
    description_folded: str
    tags_folded: tuple[str, ...]
    content_folded: str

    @classmethod
    def from_document(cls, doc: Document) -> "SearchableDocument":
        description = doc.meta.description or ""
        tags = tuple(doc.meta.tags or ())
        return cls(
            category=doc.category,
            path=doc.path,
            title=doc.meta.title,
            description=description,
            tags=tags,
            content=doc.content,
            updated_at=doc.meta.updated_at,
            title_folded=doc.meta.title.casefold(),
            description_folded=description.casefold(),
            tags_folded=tuple(t.casefold() for t in tags),
            content_folded=doc.content.casefold(),
        )

    @property
    def uri(self) -> str:
        return document_uri(self.category, self.path)


class SearchFilters(BaseModel):
    """Hard predicates applied before scoring."""

    kind: DocumentKind | None = None
    language: str | None = None
    project: str | None = None


class SearchHit(BaseModel):
    """Model for a search result."""

    model_config = ConfigDict(populate_by_name=True)

    uri: str
    type: DocumentKind
    name: str
    path: str
    title: str
    description: str | None = None
    tags: list[str]
    updated_at: str = Field(serialization_alias="updatedAt")
    score: int
    matches: list[str] = []
    content: str | None = None
