"""
Configuration module for the Jane document server.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use the JANE_ prefix (e.g., JANE_DOCS_ROOT).
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

STDLIB_DIRNAME = "stdlib"
SPECS_DIRNAME = "specs"


def _get_default_docs_root() -> Path:
    """Documents live in a Jane directory under the working directory."""
    return Path.cwd() / "Jane"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - JANE_DOCS_ROOT: Directory holding the stdlib/ and specs/ trees
    - JANE_HTTP_HOST / JANE_HTTP_PORT: HTTP transport bind address
    - JANE_EAGER_INDEX: Build the search index at startup (false = on first read)
    - JANE_SEED_EXAMPLES: Create the sample documents if they are missing
    - JANE_MAX_SEARCH_RESULTS: Upper bound on search results
    - JANE_MAX_CONTENT_SIZE: Maximum document body size in bytes
    - JANE_MAX_TITLE_LENGTH: Maximum title length
    - JANE_LOG_LEVEL: Minimum log level
    """

    docs_root: Path = Field(default_factory=_get_default_docs_root)
    http_host: str = "0.0.0.0"
    http_port: int = 9001
    eager_index: bool = True
    seed_examples: bool = False
    default_languages: list[str] = ["javascript", "typescript", "python"]
    default_projects: list[str] = ["project1", "project2"]
    max_search_results: int = 50
    max_content_size: int = 1 * 1024 * 1024  # 1MB in bytes
    max_title_length: int = 200
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="JANE_")
