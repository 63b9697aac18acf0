# Jane MCP Server
#
# Modular package structure:
# - config.py: Settings (pydantic-settings, JANE_* environment variables)
# - logging.py: structlog configuration (stderr only)
# - errors.py: Domain exception hierarchy
# - models.py: Categories, document metadata, search models
# - utils.py: Timestamps, path security, and validation helpers
# - frontmatter.py: YAML frontmatter parsing and generation
# - store.py: DocumentStore over the on-disk hierarchy
# - search.py: In-memory SearchIndex
# - rwlock.py: Reader/writer lock shared by all transports
# - knowledge.py: KnowledgeBase (store + index + lock)
# - protocol.py: JSON-RPC 2.0 dispatcher and registries
# - tools.py: MCP tool and resource handlers
# - seed.py: Sample documents
# - stdio.py / http.py: Transports
# - server.py: Server assembly
# - main.py: Command-line entry point

__version__ = "1.0.0"
