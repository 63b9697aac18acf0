"""
MCP tools and resources for the Jane document server.

`register_tools()` and `register_resources()` bind handlers over one
KnowledgeBase into a ProtocolDispatcher. Each tool's parameter model is both
its validator and its published JSON Schema.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .knowledge import KnowledgeBase, category_for
from .models import Document, DocumentKind, MetaChanges, SearchFilters, SpecCategory, StdlibCategory
from .protocol import ProtocolDispatcher


# ============== Parameter models ==============

class GetStdlibParams(BaseModel):
    language: str = Field(min_length=1, description="The programming language (e.g., javascript, typescript, python)")
    path: str = Field(min_length=1, description="The path to the stdlib document within the language directory")


class GetSpecParams(BaseModel):
    project: str = Field(min_length=1, description="The project name")
    path: str = Field(min_length=1, description="The path to the spec document within the project directory")


class ListStdlibsParams(BaseModel):
    language: str | None = Field(None, description="Optional language filter")


class ListSpecsParams(BaseModel):
    project: str | None = Field(None, description="Optional project filter")


class SearchParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(description="The search query; '*' lists every document")
    type: DocumentKind | None = Field(None, description="Optional document type filter")
    language: str | None = Field(None, description="Optional language filter (for stdlib)")
    project: str | None = Field(None, description="Optional project filter (for specs)")
    include_content: bool = Field(False, alias="includeContent", description="Whether to include full content in results")
    limit: int | None = Field(None, ge=1, description="Maximum number of results")


class _DocumentTarget(BaseModel):
    type: DocumentKind = Field(description="Document type")
    language: str | None = Field(None, description="Required for stdlib documents")
    project: str | None = Field(None, description="Required for spec documents")
    path: str = Field(min_length=1, description="Path within the language/project directory")

    def category(self) -> StdlibCategory | SpecCategory:
        return category_for(self.type, language=self.language, project=self.project)


class CreateDocumentParams(_DocumentTarget):
    title: str = Field(min_length=1, description="Document title")
    description: str | None = Field(None, description="Document description")
    author: str | None = Field(None, description="Document author")
    tags: list[str] | None = Field(None, description="Document tags")
    content: str = Field(description="Document content (markdown)")


class UpdateDocumentParams(_DocumentTarget):
    title: str | None = Field(None, description="Document title")
    description: str | None = Field(None, description="Document description")
    author: str | None = Field(None, description="Document author")
    tags: list[str] | None = Field(None, description="Document tags")
    content: str | None = Field(None, description="Document content (markdown)")


class StdlibResourceParams(BaseModel):
    language: str
    path: str


class SpecResourceParams(BaseModel):
    project: str
    path: str


def _document_result(doc: Document) -> dict[str, Any]:
    summary = doc.summary()
    return {
        "found": True,
        "uri": doc.uri,
        "title": doc.meta.title,
        "description": doc.meta.description,
        "author": doc.meta.author,
        "content": doc.content,
        "tags": summary["tags"],
        "createdAt": summary["createdAt"],
        "updatedAt": summary["updatedAt"],
    }


# ============== Tools ==============

def register_tools(dispatcher: ProtocolDispatcher, kb: KnowledgeBase) -> None:
    """Register the seven document tools."""

    @dispatcher.tool(
        "get_stdlib",
        GetStdlibParams,
        "Retrieve a standard library document for a specific language",
        title="Get Standard Library Document",
    )
    async def get_stdlib(params: GetStdlibParams) -> dict[str, Any]:
        doc = await kb.get_document(StdlibCategory(language=params.language), params.path)
        return _document_result(doc)

    @dispatcher.tool(
        "get_spec",
        GetSpecParams,
        "Retrieve a specification document for a specific project",
        title="Get Specification Document",
    )
    async def get_spec(params: GetSpecParams) -> dict[str, Any]:
        doc = await kb.get_document(SpecCategory(project=params.project), params.path)
        return _document_result(doc)

    @dispatcher.tool(
        "list_stdlibs",
        ListStdlibsParams,
        "List available standard library languages, or the documents of one language",
        title="List Standard Library Documents",
    )
    async def list_stdlibs(params: ListStdlibsParams) -> dict[str, Any]:
        if params.language:
            documents = await kb.list_documents(StdlibCategory(language=params.language))
            return {"language": params.language, "documents": documents}
        return {"languages": await kb.list_categories("stdlib")}

    @dispatcher.tool(
        "list_specs",
        ListSpecsParams,
        "List available specification projects, or the documents of one project",
        title="List Specification Documents",
    )
    async def list_specs(params: ListSpecsParams) -> dict[str, Any]:
        if params.project:
            documents = await kb.list_documents(SpecCategory(project=params.project))
            return {"project": params.project, "documents": documents}
        return {"projects": await kb.list_categories("spec")}

    @dispatcher.tool(
        "search",
        SearchParams,
        "Search for documents by content or metadata. All query words must match; "
        "title matches rank above description/tag matches, which rank above content matches.",
        title="Search Documents",
    )
    async def search(params: SearchParams) -> dict[str, Any]:
        filters = SearchFilters(kind=params.type, language=params.language, project=params.project)
        hits = await kb.search(params.query, filters, include_content=params.include_content, limit=params.limit)
        return {"query": params.query, "total": len(hits), "results": hits}

    @dispatcher.tool(
        "create_document",
        CreateDocumentParams,
        "Create a new document with frontmatter metadata",
        title="Create Document",
    )
    async def create_document(params: CreateDocumentParams) -> dict[str, Any]:
        doc = await kb.create_document(
            params.category(),
            params.path,
            title=params.title,
            content=params.content,
            description=params.description,
            author=params.author,
            tags=params.tags,
        )
        return {"created": True, **doc.summary()}

    @dispatcher.tool(
        "update_document",
        UpdateDocumentParams,
        "Update an existing document's content and/or metadata. Omitted fields keep their values.",
        title="Update Document",
    )
    async def update_document(params: UpdateDocumentParams) -> dict[str, Any]:
        changes = MetaChanges(
            title=params.title,
            description=params.description,
            author=params.author,
            tags=params.tags,
        )
        doc = await kb.update_document(params.category(), params.path, changes, params.content)
        return {"updated": True, **doc.summary()}


# ============== Resources ==============

def _filter_prefix(values: list[str], value: str) -> list[str]:
    needle = value.lower()
    return [v for v in values if needle in v.lower()]


def register_resources(dispatcher: ProtocolDispatcher, kb: KnowledgeBase) -> None:
    """Register the stdlib:// and spec:// resource templates."""

    async def complete_language(value: str, context: dict[str, str]) -> list[str]:
        return _filter_prefix(await kb.list_categories("stdlib"), value)

    async def complete_project(value: str, context: dict[str, str]) -> list[str]:
        return _filter_prefix(await kb.list_categories("spec"), value)

    async def complete_stdlib_path(value: str, context: dict[str, str]) -> list[str]:
        if not context.get("language"):
            return []
        return _filter_prefix(await kb.list_documents(StdlibCategory(language=context["language"])), value)

    async def complete_spec_path(value: str, context: dict[str, str]) -> list[str]:
        if not context.get("project"):
            return []
        return _filter_prefix(await kb.list_documents(SpecCategory(project=context["project"])), value)

    async def list_indexed(kind: DocumentKind) -> list[dict[str, Any]]:
        return [
            {
                "uri": entry.uri,
                "name": entry.path,
                "title": entry.title,
                "description": entry.description or None,
                "mimeType": "text/markdown",
            }
            for entry in await kb.indexed_documents()
            if entry.category.kind == kind
        ]

    async def list_stdlib_resources() -> list[dict[str, Any]]:
        return await list_indexed("stdlib")

    async def list_spec_resources() -> list[dict[str, Any]]:
        return await list_indexed("spec")

    @dispatcher.resource(
        "stdlib",
        "stdlib://{language}/{path}",
        StdlibResourceParams,
        "Access standard library documents for different programming languages",
        title="Standard Library Document",
        completers={"language": complete_language, "path": complete_stdlib_path},
        lister=list_stdlib_resources,
    )
    async def read_stdlib(params: StdlibResourceParams) -> str:
        doc = await kb.get_document(StdlibCategory(language=params.language), params.path)
        return doc.content

    @dispatcher.resource(
        "spec",
        "spec://{project}/{path}",
        SpecResourceParams,
        "Access specification documents for different projects",
        title="Specification Document",
        completers={"project": complete_project, "path": complete_spec_path},
        lister=list_spec_resources,
    )
    async def read_spec(params: SpecResourceParams) -> str:
        doc = await kb.get_document(SpecCategory(project=params.project), params.path)
        return doc.content
