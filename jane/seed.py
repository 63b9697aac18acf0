"""Sample documents created on startup when seeding is enabled."""

from typing import TYPE_CHECKING, NamedTuple

import structlog

from .errors import AlreadyExistsError
from .models import SpecCategory, StdlibCategory

if TYPE_CHECKING:
    from .knowledge import KnowledgeBase

logger = structlog.get_logger(__name__)


class Sample(NamedTuple):
    category: StdlibCategory | SpecCategory
    path: str
    title: str
    content: str


SAMPLES = [
    Sample(
        StdlibCategory(language="javascript"),
        "array-methods.md",
        "JavaScript Array Methods",
        "# JavaScript Array Methods\n\n"
        "Common array methods in JavaScript:\n\n"
        "- `map()`: Creates a new array with the results of calling a function on every element\n"
        "- `filter()`: Creates a new array with elements that pass a test\n"
        "- `reduce()`: Applies a function to reduce the array to a single value\n"
        "- `forEach()`: Executes a function once for each array element\n",
    ),
    Sample(
        StdlibCategory(language="python"),
        "list-methods.md",
        "Python List Methods",
        "# Python List Methods\n\n"
        "Common list methods in Python:\n\n"
        "- `append()`: Adds an element to the end of the list\n"
        "- `extend()`: Adds all elements of a list to another list\n"
        "- `insert()`: Inserts an item at a given position\n"
        "- `remove()`: Removes an item from the list\n",
    ),
    Sample(
        StdlibCategory(language="typescript"),
        "interfaces.md",
        "TypeScript Interfaces",
        "# TypeScript Interfaces\n\n"
        "Interfaces in TypeScript define the structure of objects:\n\n"
        "```typescript\n"
        "interface User {\n"
        "  id: number;\n"
        "  name: string;\n"
        "  email?: string; // Optional property\n"
        "}\n"
        "```\n",
    ),
    Sample(
        SpecCategory(project="project1"),
        "api.md",
        "API Documentation",
        "# API Documentation\n\n"
        "REST API endpoints:\n\n"
        "## Users\n\n"
        "- `GET /api/users`: List all users\n"
        "- `GET /api/users/:id`: Get user by ID\n"
        "- `POST /api/users`: Create a new user\n"
        "- `PUT /api/users/:id`: Update a user\n"
        "- `DELETE /api/users/:id`: Delete a user\n",
    ),
    Sample(
        SpecCategory(project="project2"),
        "architecture.md",
        "System Architecture",
        "# System Architecture\n\n"
        "The system consists of the following components:\n\n"
        "1. Frontend (React.js)\n"
        "2. Backend API (Node.js/Express)\n"
        "3. Database (PostgreSQL)\n"
        "4. Authentication Service (OAuth2)\n",
    ),
]


async def seed_examples(kb: "KnowledgeBase") -> int:
    """Create any sample document that is missing. Returns how many were created."""
    created = 0
    for sample in SAMPLES:
        try:
            await kb.create_document(
                sample.category,
                sample.path,
                title=sample.title,
                content=sample.content,
                description=f"Sample document for {sample.category.kind} {sample.category.name}",
                author="Jane",
                tags=["sample"],
            )
        except AlreadyExistsError:
            continue
        created += 1
    logger.info("samples_seeded", created=created, total=len(SAMPLES))
    return created
