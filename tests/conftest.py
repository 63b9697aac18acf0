"""
Pytest configuration and fixtures for Jane tests.
"""

from pathlib import Path

import pytest

from jane.config import Settings
from jane.knowledge import KnowledgeBase
from jane.server import create_server
from jane.store import DocumentStore


PYTHON_LIST_METHODS = """---
title: Python List Methods
description: Common list operations
author: Jane
tags:
  - python
  - lists
createdAt: '2024-01-15T10:00:00.000000+00:00'
updatedAt: '2024-01-16T10:00:00.000000+00:00'
---

# Python List Methods

Use `append()` to add an element to the end of a list.
Use `extend()` to add every element of another list.
"""

JS_ARRAY_METHODS = """---
title: JavaScript Array Methods
description: Higher-order array functions
tags:
  - javascript
  - arrays
createdAt: '2024-02-01T09:00:00.000000+00:00'
updatedAt: '2024-02-01T09:00:00.000000+00:00'
---

# JavaScript Array Methods

- `map()` creates a new array from the results of a function
- `filter()` keeps the elements that pass a test
"""

PROJECT1_API = """---
title: API Documentation
description: REST endpoints of project1
tags:
  - api
createdAt: '2024-03-01T08:00:00.000000+00:00'
updatedAt: '2024-03-02T08:00:00.000000+00:00'
---

# API Documentation

- `GET /api/users`: List all users
- `POST /api/users`: Create a new user
"""

PROJECT1_SETUP = """---
title: Setup Guide
createdAt: '2024-03-05T08:00:00.000000+00:00'
updatedAt: '2024-03-05T08:00:00.000000+00:00'
---

Install the dependencies, then start the API server.
"""


def write_raw(root: Path, relative: str, text: str) -> Path:
    """Write a file under the docs root, creating parent directories."""
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")
    return target


@pytest.fixture
def docs_root(tmp_path: Path) -> Path:
    """Create a temporary docs root with a few documents.

    Layout:
        stdlib/python/list-methods.md
        stdlib/javascript/array-methods.md
        specs/project1/api.md
        specs/project1/guides/setup.md
    """
    root = tmp_path / "Jane"
    write_raw(root, "stdlib/python/list-methods.md", PYTHON_LIST_METHODS)
    write_raw(root, "stdlib/javascript/array-methods.md", JS_ARRAY_METHODS)
    write_raw(root, "specs/project1/api.md", PROJECT1_API)
    write_raw(root, "specs/project1/guides/setup.md", PROJECT1_SETUP)
    return root


@pytest.fixture
def settings(docs_root: Path) -> Settings:
    return Settings(docs_root=docs_root)


@pytest.fixture
def store(docs_root: Path) -> DocumentStore:
    return DocumentStore(docs_root)


@pytest.fixture
async def kb(settings: Settings):
    """An initialized knowledge base over the temporary docs root."""
    knowledge_base = KnowledgeBase.from_settings(settings)
    await knowledge_base.init()
    yield knowledge_base
    await knowledge_base.shutdown()


@pytest.fixture
async def jane(settings: Settings):
    """A started server: knowledge base plus frozen dispatcher."""
    server = create_server(settings)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def dispatcher(jane):
    return jane.dispatcher
