"""
In-memory search index for the Jane document server.

Holds a case-folded projection of every document, keyed by (category, path).
Built from the store at startup and kept current by upserts after each write;
nothing is persisted.
"""

import time

import structlog

from .errors import JaneError
from .models import (
    Document,
    SearchableDocument,
    SearchFilters,
    SearchHit,
    SpecCategory,
    StdlibCategory,
    document_uri,
)
from .store import AnyCategory, DocumentStore
from .utils import TOKEN_SPLIT_PATTERN, format_timestamp

logger = structlog.get_logger(__name__)

WILDCARD = "*"

# Score weights per field hit
TITLE_WEIGHT = 3
DESCRIPTION_WEIGHT = 2
TAG_WEIGHT = 2
CONTENT_WEIGHT = 1


def tokenize(query: str) -> list[str]:
    """Split a query on whitespace and case-fold each token."""
    return [t.casefold() for t in TOKEN_SPLIT_PATTERN.split(query.strip()) if t]


def _matches_filters(entry: SearchableDocument, filters: SearchFilters) -> bool:
    if filters.kind and entry.category.kind != filters.kind:
        return False
    # A language only constrains stdlib entries and a project only spec entries
    match entry.category:
        case StdlibCategory(language=language):
            return not filters.language or filters.language == language
        case SpecCategory(project=project):
            return not filters.project or filters.project == project
    return False


def _score(entry: SearchableDocument, tokens: list[str]) -> int | None:
    """Weighted hit count, or None when some token appears in no field."""
    score = 0
    for token in tokens:
        title_hits = entry.title_folded.count(token)
        description_hits = entry.description_folded.count(token)
        tag_hits = sum(tag.count(token) for tag in entry.tags_folded)
        content_hits = entry.content_folded.count(token)

        if not (title_hits or description_hits or tag_hits or content_hits):
            return None

        score += (
            TITLE_WEIGHT * title_hits
            + DESCRIPTION_WEIGHT * description_hits
            + TAG_WEIGHT * tag_hits
            + CONTENT_WEIGHT * content_hits
        )
    return score


def _matching_lines(entry: SearchableDocument, tokens: list[str]) -> list[str]:
    """First content line containing each token."""
    lines = entry.content.split("\n")
    matches: list[str] = []
    for token in tokens:
        for line in lines:
            if token in line.casefold():
                stripped = line.strip()
                if stripped not in matches:
                    matches.append(stripped)
                break
    return matches


class SearchIndex:
    """In-memory index of searchable documents."""

    def __init__(self):
        self._entries: dict[tuple[AnyCategory, str], SearchableDocument] = {}
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def __len__(self) -> int:
        return len(self._entries)

    async def initialize(self, store: DocumentStore) -> int:
        """Rebuild the whole index from the store. Returns the document count.

        Documents that cannot be read are skipped with a warning; a single
        bad file never prevents startup.
        """
        start_time = time.time()
        entries: dict[tuple[AnyCategory, str], SearchableDocument] = {}
        skipped = 0

        for category, path in store.scan():
            try:
                doc = await store.read(category, path)
            except JaneError as e:
                logger.warning("document_index_skipped", uri=document_uri(category, path), error=str(e))
                skipped += 1
                continue
            entries[(doc.category, doc.path)] = SearchableDocument.from_document(doc)

        self._entries = entries
        self._initialized = True

        logger.info(
            "index_initialized",
            document_count=len(entries),
            skipped=skipped,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return len(entries)

    def upsert(self, doc: Document) -> None:
        """Insert or replace the entry for (doc.category, doc.path)."""
        key = (doc.category, doc.path)
        replaced = key in self._entries
        self._entries[key] = SearchableDocument.from_document(doc)
        logger.debug("index_upserted", uri=doc.uri, replaced=replaced)

    def get(self, category: AnyCategory, path: str) -> SearchableDocument | None:
        return self._entries.get((category, path))

    def entries(self) -> list[SearchableDocument]:
        """All entries ordered by URI."""
        return sorted(self._entries.values(), key=lambda e: e.uri)

    def search(
        self,
        query: str,
        filters: SearchFilters | None = None,
        include_content: bool = False,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Search indexed documents.

        Every token must appear in the title, description, tags or content
        (AND across tokens). Results are ordered by score, then most recently
        updated, then path. The wildcard query `*` (or a blank query) returns
        every document that passes the filters.
        """
        filters = filters or SearchFilters()
        wildcard = query.strip() in ("", WILDCARD)
        tokens = [] if wildcard else tokenize(query)

        scored: list[tuple[int, SearchableDocument]] = []
        for entry in self._entries.values():
            if not _matches_filters(entry, filters):
                continue
            score = _score(entry, tokens)
            if score is None:
                continue
            scored.append((score, entry))

        # Stable sorts: path asc, then updatedAt desc, then score desc
        scored.sort(key=lambda item: (item[1].path, item[1].uri))
        scored.sort(key=lambda item: item[1].updated_at, reverse=True)
        scored.sort(key=lambda item: item[0], reverse=True)

        if limit is not None:
            scored = scored[:limit]

        results = [
            SearchHit(
                uri=entry.uri,
                type=entry.category.kind,
                name=entry.category.name,
                path=entry.path,
                title=entry.title,
                description=entry.description or None,
                tags=list(entry.tags),
                updated_at=format_timestamp(entry.updated_at),
                score=score,
                matches=_matching_lines(entry, tokens),
                content=entry.content if include_content else None,
            )
            for score, entry in scored
        ]
        logger.debug("search_completed", query=query, results=len(results))
        return results
