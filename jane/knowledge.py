"""
Knowledge base: the document store and search index behind one lock.

The process entry point constructs a KnowledgeBase, calls init() before
serving and shutdown() afterwards, and hands the same instance to every
transport. Writes (create/update/rebuild) hold the writer lock across the
file write and the index upsert, so readers observe either the state before
a write or the state after it.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from .config import Settings
from .errors import IndexCorruptionError, InvalidParamsError, NotFoundError
from .models import (
    Document,
    DocumentKind,
    DocumentMeta,
    MetaChanges,
    SearchableDocument,
    SearchFilters,
    SearchHit,
    SpecCategory,
    StdlibCategory,
    document_uri,
)
from .rwlock import ReadWriteLock
from .search import SearchIndex
from .store import AnyCategory, DocumentStore
from .utils import utcnow, validate_content_size, validate_title

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def category_for(kind: DocumentKind, language: str | None = None, project: str | None = None) -> AnyCategory:
    """Build the category for a document type and its required name.

    Raises:
        InvalidParamsError: If the name the type requires is missing
    """
    match kind:
        case "stdlib":
            if not language:
                raise InvalidParamsError("Language is required for stdlib documents")
            return StdlibCategory(language=language)
        case "spec":
            if not project:
                raise InvalidParamsError("Project is required for spec documents")
            return SpecCategory(project=project)
    raise InvalidParamsError(f"Unknown document type: {kind}")


class KnowledgeBase:
    """Document store plus search index with a store-wide reader/writer lock."""

    def __init__(self, store: DocumentStore, index: SearchIndex, settings: Settings):
        self.store = store
        self.index = index
        self.settings = settings
        self._lock = ReadWriteLock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "KnowledgeBase":
        return cls(DocumentStore(settings.docs_root), SearchIndex(), settings)

    # ============== Lifecycle ==============

    async def init(self) -> None:
        """Create the directory layout, seed samples, and build the index if eager."""
        await self.store.ensure_structure(self.settings.default_languages, self.settings.default_projects)

        if self.settings.seed_examples:
            from .seed import seed_examples

            await seed_examples(self)

        if self.settings.eager_index:
            await self.rebuild_index()
        logger.info(
            "knowledge_base_ready",
            docs_root=str(self.store.root),
            eager_index=self.settings.eager_index,
            document_count=len(self.index),
        )

    async def shutdown(self) -> None:
        # Wait for any in-flight write to finish before the process exits
        async with self._lock.write():
            logger.info("knowledge_base_closed", document_count=len(self.index))

    async def rebuild_index(self) -> int:
        async with self._lock.write():
            return await self.index.initialize(self.store)

    async def _ensure_index(self) -> None:
        if self.index.is_initialized:
            return
        async with self._lock.write():
            if not self.index.is_initialized:
                await self.index.initialize(self.store)

    async def _with_recovery(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a read; on store/index disagreement rebuild the index and retry once."""
        await self._ensure_index()
        try:
            return await operation()
        except IndexCorruptionError as e:
            logger.warning("index_inconsistent", error=str(e))
            await self.rebuild_index()
            return await operation()

    # ============== Reads ==============

    async def get_document(self, category: AnyCategory, path: str) -> Document:
        """Read a document from disk, checking that the index agrees with it.

        Raises:
            NotFoundError: If the document does not exist
        """
        async def read() -> Document:
            async with self._lock.read():
                try:
                    doc = await self.store.read(category, path)
                except NotFoundError:
                    if self.index.get(category, self.store.canonical_path(category, path)) is not None:
                        raise IndexCorruptionError(
                            f"Indexed document missing on disk: {document_uri(category, path)}"
                        ) from None
                    raise

                entry = self.index.get(doc.category, doc.path)
                if entry is None or entry.updated_at != doc.meta.updated_at:
                    raise IndexCorruptionError(f"Index is stale for {doc.uri}")
                return doc

        return await self._with_recovery(read)

    async def list_documents(self, category: AnyCategory) -> list[str]:
        async with self._lock.read():
            return await self.store.list_documents(category)

    async def list_categories(self, kind: DocumentKind) -> list[str]:
        async with self._lock.read():
            return await self.store.list_categories(kind)

    async def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        include_content: bool = False,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Search the index; every hit is confirmed to still exist on disk."""
        if limit is None or limit > self.settings.max_search_results:
            limit = self.settings.max_search_results

        async def run() -> list[SearchHit]:
            async with self._lock.read():
                hits = self.index.search(query, filters, include_content=include_content, limit=limit)
                for hit in hits:
                    category = category_for(hit.type, language=hit.name, project=hit.name)
                    if not await self.store.exists(category, hit.path):
                        raise IndexCorruptionError(f"Indexed document missing on disk: {hit.uri}")
                return hits

        return await self._with_recovery(run)

    async def indexed_documents(self) -> list[SearchableDocument]:
        await self._ensure_index()
        async with self._lock.read():
            return self.index.entries()

    # ============== Writes ==============

    async def create_document(
        self,
        category: AnyCategory,
        path: str,
        title: str,
        content: str,
        description: str | None = None,
        author: str | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        """Create a document and index it.

        Raises:
            AlreadyExistsError: If the document exists
            InvalidParamsError: If title or content break the limits
        """
        title = validate_title(title, self.settings.max_title_length)
        validate_content_size(content, self.settings.max_content_size)

        now = utcnow()
        meta = DocumentMeta(
            title=title,
            description=description,
            author=author,
            tags=tags,
            createdAt=now,
            updatedAt=now,
        )

        async with self._lock.write():
            doc = await self.store.create(category, path, meta, content)
            self.index.upsert(doc)

        logger.info("document_created", uri=doc.uri)
        return doc

    async def update_document(
        self,
        category: AnyCategory,
        path: str,
        changes: MetaChanges | None = None,
        content: str | None = None,
    ) -> Document:
        """Merge changes into a document and re-index it.

        Raises:
            NotFoundError: If the document does not exist
        """
        if changes is not None and changes.title is not None:
            changes = changes.model_copy(
                update={"title": validate_title(changes.title, self.settings.max_title_length)}
            )
        if content is not None:
            validate_content_size(content, self.settings.max_content_size)

        async with self._lock.write():
            doc = await self.store.update(category, path, changes, content)
            self.index.upsert(doc)

        logger.info("document_updated", uri=doc.uri, fields=sorted(changes.supplied()) if changes else [])
        return doc
