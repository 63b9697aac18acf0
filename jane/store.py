"""
File-backed document store for the Jane document server.

Documents live under `<root>/stdlib/<language>/` and `<root>/specs/<project>/`
as markdown files with a YAML frontmatter block. Every path handed in by a
caller is resolved and proven to stay inside its category directory.

The store does no locking: callers must serialize writes to the same
document (the KnowledgeBase holds a store-wide writer lock).
"""

import contextlib
import uuid
from collections.abc import Iterator
from pathlib import Path

import aiofiles
import aiofiles.os
import structlog
from pydantic import ValidationError

from .config import SPECS_DIRNAME, STDLIB_DIRNAME
from .errors import (
    AlreadyExistsError,
    InvalidParamsError,
    MalformedDocumentError,
    NotFoundError,
    PathSecurityError,
    StorageError,
)
from .frontmatter import parse_frontmatter, render_document
from .models import (
    Document,
    DocumentKind,
    DocumentMeta,
    MetaChanges,
    SpecCategory,
    StdlibCategory,
    document_uri,
)
from .utils import (
    DOCUMENT_SUFFIX,
    is_hidden,
    next_timestamp,
    normalize_document_path,
    normalize_newlines,
    relative_posix,
    require_markdown,
    resolve_within,
    validate_segment,
)

logger = structlog.get_logger(__name__)

AnyCategory = StdlibCategory | SpecCategory


class DocumentStore:
    """CRUD operations over the on-disk document hierarchy."""

    def __init__(self, root: Path):
        self.root = root

    # ============== Path resolution ==============

    def kind_root(self, kind: DocumentKind) -> Path:
        match kind:
            case "stdlib":
                return self.root / STDLIB_DIRNAME
            case "spec":
                return self.root / SPECS_DIRNAME
        raise InvalidParamsError(f"Unknown document type: {kind}")

    def category_root(self, category: AnyCategory) -> Path:
        """Directory of a category bucket, validated to sit inside its kind root."""
        match category:
            case StdlibCategory(language=language):
                name = validate_segment(language, "language")
            case SpecCategory(project=project):
                name = validate_segment(project, "project")
            case _:
                raise InvalidParamsError(f"Unknown category: {category!r}")
        kind_root = self.kind_root(category.kind)
        return resolve_within(kind_root, name)

    def resolve_path(self, category: AnyCategory, path: str) -> Path:
        """Canonical absolute path of a document.

        Raises:
            InvalidParamsError: If the path is empty or not a markdown file
            PathSecurityError: If the path escapes the category directory
        """
        normalized = normalize_document_path(path)
        resolved = resolve_within(self.category_root(category), normalized)
        require_markdown(normalized)
        return resolved

    # ============== Reads ==============

    async def exists(self, category: AnyCategory, path: str) -> bool:
        target = self.resolve_path(category, path)
        return await aiofiles.os.path.isfile(target)

    async def read(self, category: AnyCategory, path: str) -> Document:
        """Read and parse a document.

        Raises:
            NotFoundError: If no document exists at (category, path)
            MalformedDocumentError: If the file's frontmatter is broken
            StorageError: On any other filesystem failure
        """
        target = self.resolve_path(category, path)
        uri = document_uri(category, path)

        try:
            async with aiofiles.open(target, encoding="utf-8", newline="") as f:
                raw = await f.read()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise NotFoundError(f"Document not found: {uri}") from None
        except UnicodeDecodeError as e:
            raise MalformedDocumentError(f"Document is not valid UTF-8: {uri}") from e
        except OSError as e:
            logger.error("document_read_failed", path=str(target), error=str(e))
            raise StorageError(f"Failed to read {uri}") from e

        try:
            meta, body = parse_frontmatter(raw)
        except MalformedDocumentError as e:
            raise MalformedDocumentError(f"{uri}: {e}") from e

        return Document(category=category, path=self._canonical(category, target), meta=meta, content=body)

    async def list_documents(self, category: AnyCategory) -> list[str]:
        """Relative paths of all documents in a category, sorted. O(n) directory scan."""
        return list(self._walk(self.category_root(category)))

    async def list_categories(self, kind: DocumentKind) -> list[str]:
        """Names of the languages (stdlib) or projects (spec) present on disk."""
        return self._category_names(kind)

    def scan(self) -> Iterator[tuple[AnyCategory, str]]:
        """Every (category, path) pair in the store, stdlib first.

        Directories whose names are not valid category names are skipped.
        """
        for language in self._category_names("stdlib"):
            category = StdlibCategory(language=language)
            for path in self._walk(self.category_root(category)):
                yield category, path
        for project in self._category_names("spec"):
            category = SpecCategory(project=project)
            for path in self._walk(self.category_root(category)):
                yield category, path

    # ============== Writes ==============

    async def create(self, category: AnyCategory, path: str, meta: DocumentMeta, content: str) -> Document:
        """Write a new document.

        Raises:
            AlreadyExistsError: If (category, path) is already taken
            PathSecurityError: If the path escapes the category directory
        """
        target = self.resolve_path(category, path)
        if await aiofiles.os.path.exists(target):
            raise AlreadyExistsError(f"Document already exists at {document_uri(category, path)}")

        body = normalize_newlines(content)
        await self._write_atomic(target, render_document(meta, body))
        return Document(category=category, path=self._canonical(category, target), meta=meta, content=body)

    async def update(
        self,
        category: AnyCategory,
        path: str,
        changes: MetaChanges | None = None,
        content: str | None = None,
    ) -> Document:
        """Merge the supplied fields into an existing document and rewrite it.

        Fields not supplied keep their previous values; updatedAt always
        moves forward.

        Raises:
            NotFoundError: If the document does not exist
        """
        existing = await self.read(category, path)

        data = existing.meta.model_dump(by_alias=True)
        if changes is not None:
            data.update(changes.supplied())
        data["updatedAt"] = next_timestamp(existing.meta.updated_at)

        try:
            meta = DocumentMeta.model_validate(data)
        except ValidationError as e:
            raise InvalidParamsError(f"Invalid metadata: {e.errors(include_url=False)[0]['msg']}") from e

        body = normalize_newlines(content) if content is not None else existing.content
        await self._write_atomic(self.resolve_path(category, path), render_document(meta, body))
        return Document(category=category, path=existing.path, meta=meta, content=body)

    async def ensure_structure(self, languages: list[str], projects: list[str]) -> None:
        """Create the stdlib/specs roots and the default category buckets."""
        try:
            await aiofiles.os.makedirs(self.kind_root("stdlib"), exist_ok=True)
            await aiofiles.os.makedirs(self.kind_root("spec"), exist_ok=True)
            for language in languages:
                await aiofiles.os.makedirs(self.category_root(StdlibCategory(language=language)), exist_ok=True)
            for project in projects:
                await aiofiles.os.makedirs(self.category_root(SpecCategory(project=project)), exist_ok=True)
        except OSError as e:
            logger.error("structure_create_failed", root=str(self.root), error=str(e))
            raise StorageError("Failed to create the document directories") from e

    # ============== Helpers ==============

    async def _write_atomic(self, target: Path, text: str) -> None:
        """Write through a temp file and rename, so readers never see half a file."""
        tmp = target.with_name(f".{target.name}.{uuid.uuid4().hex}.tmp")
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(tmp, mode="w", encoding="utf-8", newline="\n") as f:
                await f.write(text)
            await aiofiles.os.replace(tmp, target)
        except OSError as e:
            logger.error("document_write_failed", path=str(target), error=str(e))
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {target.name}") from e

    def canonical_path(self, category: AnyCategory, path: str) -> str:
        """The path as stored in the index: normalized and relative to the bucket."""
        return self._canonical(category, self.resolve_path(category, path))

    def _canonical(self, category: AnyCategory, target: Path) -> str:
        return relative_posix(target, self.category_root(category))

    def _walk(self, category_root: Path) -> Iterator[str]:
        if not category_root.is_dir():
            return
        found = []
        for doc_file in category_root.rglob(f"*{DOCUMENT_SUFFIX}"):
            rel_path = doc_file.relative_to(category_root)
            # Skip hidden files and folders (temp files included)
            if is_hidden(rel_path) or not doc_file.is_file():
                continue
            found.append(relative_posix(doc_file, category_root))
        yield from sorted(found)

    def _category_names(self, kind: DocumentKind) -> list[str]:
        label = "language" if kind == "stdlib" else "project"
        names = []
        for name in self._subdirectories(self.kind_root(kind)):
            try:
                names.append(validate_segment(name, label))
            except PathSecurityError as e:
                logger.warning("category_skipped", kind=kind, name=name, error=str(e))
        return names

    @staticmethod
    def _subdirectories(directory: Path) -> list[str]:
        if not directory.is_dir():
            return []
        return sorted(
            entry.name for entry in directory.iterdir()
            if entry.is_dir() and not entry.name.startswith(".")
        )
