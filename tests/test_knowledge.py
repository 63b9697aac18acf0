"""
Tests for the KnowledgeBase: index consistency, recovery and locking.
"""

import asyncio

import pytest

from jane.config import Settings
from jane.errors import AlreadyExistsError, InvalidParamsError, NotFoundError
from jane.knowledge import KnowledgeBase, category_for
from jane.models import MetaChanges, SearchFilters, SpecCategory, StdlibCategory
from jane.seed import SAMPLES

from conftest import PYTHON_LIST_METHODS, write_raw

PYTHON = StdlibCategory(language="python")
PROJECT1 = SpecCategory(project="project1")


class TestCategoryFor:
    """Tests for category_for()."""

    def test_stdlib(self):
        assert category_for("stdlib", language="go") == StdlibCategory(language="go")

    def test_spec(self):
        assert category_for("spec", project="alpha") == SpecCategory(project="alpha")

    def test_stdlib_requires_language(self):
        """Test that a stdlib document needs a language even if a project is given."""
        with pytest.raises(InvalidParamsError, match="Language is required"):
            category_for("stdlib", project="alpha")

    def test_spec_requires_project(self):
        with pytest.raises(InvalidParamsError, match="Project is required"):
            category_for("spec")


class TestLifecycle:
    """Tests for init() and seeding."""

    async def test_init_creates_default_structure(self, kb):
        """Test that default languages and projects exist after init."""
        assert await kb.list_categories("stdlib") == ["javascript", "python", "typescript"]
        assert await kb.list_categories("spec") == ["project1", "project2"]

    async def test_eager_index(self, kb):
        """Test that the index is built during init."""
        assert kb.index.is_initialized
        assert len(kb.index) == 4

    async def test_lazy_index_builds_on_first_read(self, docs_root):
        """Test that a lazy index is built by the first read."""
        kb = KnowledgeBase.from_settings(Settings(docs_root=docs_root, eager_index=False))
        await kb.init()
        assert not kb.index.is_initialized

        hits = await kb.search("append")

        assert kb.index.is_initialized
        assert [h.path for h in hits] == ["list-methods.md"]

    async def test_lazy_index_write_before_read(self, docs_root):
        """Test that a write before the first read does not hide other documents."""
        kb = KnowledgeBase.from_settings(Settings(docs_root=docs_root, eager_index=False))
        await kb.init()

        await kb.create_document(PYTHON, "new.md", title="New", content="Body")
        hits = await kb.search("*")

        assert len(hits) == 5

    async def test_seed_examples(self, tmp_path):
        """Test that seeding creates the sample documents once."""
        from jane.seed import seed_examples

        kb = KnowledgeBase.from_settings(Settings(docs_root=tmp_path / "Jane", seed_examples=True))
        await kb.init()

        assert len(kb.index) == len(SAMPLES)
        assert await seed_examples(kb) == 0
        doc = await kb.get_document(StdlibCategory(language="python"), "list-methods.md")
        assert doc.meta.title == "Python List Methods"
        assert doc.meta.tags == ["sample"]


class TestReadsAndWrites:
    """Tests for index consistency after writes."""

    async def test_get_document(self, kb):
        doc = await kb.get_document(PYTHON, "list-methods.md")

        assert doc.meta.title == "Python List Methods"

    async def test_get_missing(self, kb):
        with pytest.raises(NotFoundError):
            await kb.get_document(PYTHON, "missing.md")

    async def test_create_is_searchable(self, kb):
        """Test that a created document is found by the next search."""
        await kb.create_document(
            PROJECT1, "auth.md", title="Authentication Flow", content="OAuth2 tokens", tags=["security"]
        )

        hits = await kb.search("oauth2")

        assert [h.uri for h in hits] == ["spec://project1/auth.md"]
        assert hits[0].tags == ["security"]

    async def test_create_twice_fails(self, kb):
        await kb.create_document(PYTHON, "twice.md", title="Twice", content="Body")

        with pytest.raises(AlreadyExistsError):
            await kb.create_document(PYTHON, "twice.md", title="Twice", content="Body")

    async def test_update_is_searchable(self, kb):
        """Test that the index reflects an update immediately."""
        await kb.update_document(PYTHON, "list-methods.md", MetaChanges(title="Sequence Helpers"))

        assert [h.title for h in await kb.search("sequence helpers")] == ["Sequence Helpers"]
        assert [h.title for h in await kb.search("python list methods")] == ["Sequence Helpers"]
        entry = kb.index.get(PYTHON, "list-methods.md")
        doc = await kb.get_document(PYTHON, "list-methods.md")
        assert entry.updated_at == doc.meta.updated_at

    async def test_title_is_trimmed(self, kb):
        doc = await kb.create_document(PYTHON, "trim.md", title="  Padded  ", content="Body")

        assert doc.meta.title == "Padded"

    async def test_title_too_long(self, kb):
        with pytest.raises(InvalidParamsError, match="maximum length"):
            await kb.create_document(PYTHON, "long.md", title="x" * 201, content="Body")

    async def test_content_too_large(self, docs_root):
        kb = KnowledgeBase.from_settings(Settings(docs_root=docs_root, max_content_size=10))
        await kb.init()

        with pytest.raises(InvalidParamsError, match="Content size"):
            await kb.create_document(PYTHON, "big.md", title="Big", content="x" * 11)
        with pytest.raises(InvalidParamsError, match="Content size"):
            await kb.update_document(PYTHON, "list-methods.md", content="x" * 11)

    async def test_search_limit_capped(self, docs_root):
        """Test that the configured maximum bounds any requested limit."""
        kb = KnowledgeBase.from_settings(Settings(docs_root=docs_root, max_search_results=2))
        await kb.init()

        assert len(await kb.search("*", limit=100)) == 2

    async def test_search_filters_passed(self, kb):
        hits = await kb.search("*", SearchFilters(kind="stdlib"))

        assert {h.type for h in hits} == {"stdlib"}


class TestRecovery:
    """The index is rebuilt when it disagrees with the files on disk."""

    async def test_file_deleted_behind_index(self, kb, docs_root):
        """Test that a vanished file is reported missing and dropped from the index."""
        (docs_root / "stdlib" / "python" / "list-methods.md").unlink()

        with pytest.raises(NotFoundError):
            await kb.get_document(PYTHON, "list-methods.md")
        assert kb.index.get(PYTHON, "list-methods.md") is None

    async def test_search_skips_deleted_file(self, kb, docs_root):
        """Test that search results never point at missing files."""
        (docs_root / "stdlib" / "python" / "list-methods.md").unlink()

        assert await kb.search("append") == []
        assert len(kb.index) == 3

    async def test_file_edited_behind_index(self, kb, docs_root):
        """Test that an external edit is picked up by the next read."""
        edited = PYTHON_LIST_METHODS.replace("Python List Methods", "Edited Title").replace(
            "2024-01-16T10:00:00", "2024-07-01T10:00:00"
        )
        write_raw(docs_root, "stdlib/python/list-methods.md", edited)

        doc = await kb.get_document(PYTHON, "list-methods.md")

        assert doc.meta.title == "Edited Title"
        assert [h.path for h in await kb.search("edited")] == ["list-methods.md"]

    async def test_file_added_behind_index(self, kb, docs_root):
        """Test that a file added outside the server can be read."""
        write_raw(docs_root, "stdlib/python/outside.md", PYTHON_LIST_METHODS.replace(
            "Python List Methods", "Outside Addition"
        ))

        doc = await kb.get_document(PYTHON, "outside.md")

        assert doc.meta.title == "Outside Addition"
        assert kb.index.get(PYTHON, "outside.md") is not None


class TestConcurrency:
    """Writes are exclusive; reads never observe a partial write."""

    async def test_concurrent_updates(self, kb):
        """Test that concurrent updates all land with distinct timestamps."""
        results = await asyncio.gather(*(
            kb.update_document(PYTHON, "list-methods.md", content=f"Revision {i}\n")
            for i in range(10)
        ))

        stamps = {doc.meta.updated_at for doc in results}
        assert len(stamps) == 10
        latest = max(results, key=lambda doc: doc.meta.updated_at)
        final = await kb.get_document(PYTHON, "list-methods.md")
        assert final.content == latest.content
        assert final.meta.updated_at == latest.meta.updated_at

    async def test_reads_during_writes(self, kb):
        """Test that reads interleaved with writes always see a whole document."""
        async def write(i: int):
            await kb.update_document(PYTHON, "list-methods.md", content=f"Body {i}\n" * 50)

        async def read():
            doc = await kb.get_document(PYTHON, "list-methods.md")
            assert doc.meta.title == "Python List Methods"
            return doc.content

        tasks = []
        for i in range(5):
            tasks.append(write(i))
            tasks.append(read())
        results = await asyncio.gather(*tasks)

        for content in results[1::2]:
            lines = set(content.splitlines())
            assert len(lines) == 1 or content.startswith("# Python List Methods")

    async def test_create_same_path_concurrently(self, kb):
        """Test that exactly one of two racing creates wins."""
        results = await asyncio.gather(
            kb.create_document(PYTHON, "race.md", title="A", content="A"),
            kb.create_document(PYTHON, "race.md", title="B", content="B"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, AlreadyExistsError) for r in results) == 1


class TestReadWriteLock:
    """Tests for the reader/writer lock."""

    async def test_readers_share(self):
        from jane.rwlock import ReadWriteLock

        lock = ReadWriteLock()
        async with lock.read():
            async with lock.read():
                assert lock.readers == 2

    async def test_writer_excludes_readers(self):
        """Test that a reader waits for an active writer."""
        from jane.rwlock import ReadWriteLock

        lock = ReadWriteLock()
        events = []

        async def writer():
            async with lock.write():
                events.append("write-start")
                await asyncio.sleep(0.01)
                events.append("write-end")

        async def reader():
            await asyncio.sleep(0)
            async with lock.read():
                events.append("read")

        await asyncio.gather(writer(), reader())

        assert events == ["write-start", "write-end", "read"]

    async def test_waiting_writer_blocks_new_readers(self):
        """Test that a queued writer goes before readers arriving after it."""
        from jane.rwlock import ReadWriteLock

        lock = ReadWriteLock()
        events = []
        first_reader_in = asyncio.Event()
        release_first = asyncio.Event()

        async def first_reader():
            async with lock.read():
                first_reader_in.set()
                await release_first.wait()
            events.append("read-1")

        async def writer():
            await first_reader_in.wait()
            async with lock.write():
                events.append("write")

        async def late_reader():
            await first_reader_in.wait()
            await asyncio.sleep(0.01)
            async with lock.read():
                events.append("read-2")

        async def release():
            await asyncio.sleep(0.02)
            release_first.set()

        await asyncio.gather(first_reader(), writer(), late_reader(), release())

        assert events.index("write") < events.index("read-2")
