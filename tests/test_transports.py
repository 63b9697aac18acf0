"""
Tests for the stdio and HTTP transports and the command-line entry point.
"""

import asyncio
import json

import httpx
import pytest

from jane.http import create_app
from jane.main import build_parser, settings_from_args
from jane.stdio import STREAM_LIMIT, serve_stream

REQUESTS = [
    '{"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "get_stdlib", '
    '"arguments": {"language": "python", "path": "list-methods.md"}}}',
    '{"jsonrpc": "2.0", "id": 2, "method": "search", "params": {"query": "*"}}',
    '{"jsonrpc": "2.0", "id": 3, "method": "get_spec", "params": {"project": "project1", "path": "missing.md"}}',
    '{"jsonrpc": "2.0", "id": 4, "method": "get_stdlib", "params": {"language": "python", "path": "../../etc/passwd"}}',
    "{broken json",
    '[{"jsonrpc": "2.0", "id": 5, "method": "ping"}, {"jsonrpc": "2.0", "id": 6, "method": "nope"}]',
]


async def run_stdio(dispatcher, lines: list[str]) -> list[str]:
    """Feed lines through the stdio loop and collect what it writes."""
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    reader.feed_data("".join(line + "\n" for line in lines).encode("utf-8"))
    reader.feed_eof()
    written: list[str] = []
    await serve_stream(dispatcher, reader, written.append)
    return written


@pytest.fixture
async def client(jane):
    app = create_app(jane.dispatcher, jane.kb)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://jane.test") as http_client:
        yield http_client


class TestStdio:
    """Tests for the line-delimited stdio loop."""

    async def test_one_response_per_request(self, dispatcher):
        written = await run_stdio(dispatcher, REQUESTS)

        assert len(written) == len(REQUESTS)
        assert all(line.endswith("\n") and line.count("\n") == 1 for line in written)
        assert json.loads(written[0])["result"]["structuredContent"]["found"] is True
        assert json.loads(written[4])["error"]["code"] == -32700

    async def test_blank_lines_and_notifications_skipped(self, dispatcher):
        written = await run_stdio(dispatcher, [
            "",
            "   ",
            '{"jsonrpc": "2.0", "method": "notifications/initialized"}',
            '{"jsonrpc": "2.0", "id": 1, "method": "ping"}',
        ])

        assert [json.loads(line)["id"] for line in written] == [1]

    async def test_errors_do_not_stop_the_loop(self, dispatcher):
        """Test that failing requests are answered and the loop carries on."""
        written = await run_stdio(dispatcher, [
            "{broken json",
            '{"jsonrpc": "2.0", "id": 1, "method": "get_stdlib", "params": {"language": "python", "path": "x.md"}}',
            '{"jsonrpc": "2.0", "id": 2, "method": "ping"}',
        ])

        assert [json.loads(line).get("id") for line in written] == [None, 1, 2]
        assert json.loads(written[1])["error"]["code"] == -32000

    async def test_undecodable_json_does_not_stop_the_loop(self, dispatcher):
        """Test that an oversized integer or deep nesting is answered and the next line still served."""
        written = await run_stdio(dispatcher, [
            '{"jsonrpc": "2.0", "id": ' + "1" * 5000 + ', "method": "ping"}',
            "[" * 100000 + "]" * 100000,
            '{"jsonrpc": "2.0", "id": 1, "method": "ping"}',
        ])

        assert [json.loads(line).get("id") for line in written] == [None, None, 1]
        assert [json.loads(line)["error"]["code"] for line in written[:2]] == [-32700, -32700]

    async def test_write_then_read(self, dispatcher):
        written = await run_stdio(dispatcher, [
            json.dumps({"jsonrpc": "2.0", "id": 1, "method": "create_document", "params": {
                "type": "spec", "project": "project2", "path": "notes.md", "title": "Notes", "content": "Hello",
            }}),
            json.dumps({"jsonrpc": "2.0", "id": 2, "method": "search", "params": {"query": "hello"}}),
        ])

        assert json.loads(written[0])["result"]["created"] is True
        assert json.loads(written[1])["result"]["results"][0]["uri"] == "spec://project2/notes.md"


class TestHttp:
    """Tests for the FastAPI transport."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "name": "jane", "version": "1.0.0", "documents": 4}

    async def test_request(self, client):
        response = await client.post("/mcp", content='{"jsonrpc": "2.0", "id": 1, "method": "ping"}')

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"jsonrpc": "2.0", "result": {}, "id": 1}

    async def test_notification_accepted(self, client):
        response = await client.post("/mcp", content='{"jsonrpc": "2.0", "method": "notifications/initialized"}')

        assert response.status_code == 202
        assert response.content == b""

    async def test_parse_error(self, client):
        response = await client.post("/mcp", content="{broken")

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32700

    async def test_oversized_integer_is_parse_error(self, client):
        response = await client.post("/mcp", content='{"jsonrpc": "2.0", "id": ' + "1" * 5000 + ', "method": "ping"}')

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32700


class TestTransportParity:
    """Both transports write byte-identical JSON for the same requests."""

    async def test_identical_output(self, dispatcher, client):
        stdio_lines = await run_stdio(dispatcher, REQUESTS)
        http_bodies = [(await client.post("/mcp", content=request)).text for request in REQUESTS]

        assert [line.rstrip("\n") for line in stdio_lines] == http_bodies


class TestCommandLine:
    """Tests for argument parsing."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        args = build_parser().parse_args([])
        settings = settings_from_args(args)

        assert args.transport == "stdio"
        assert settings.docs_root == tmp_path / "Jane"
        assert settings.eager_index is True
        assert settings.seed_examples is False

    def test_overrides(self, tmp_path):
        args = build_parser().parse_args([
            "--transport", "both",
            "--docs-root", str(tmp_path),
            "--host", "127.0.0.1",
            "--port", "9100",
            "--lazy-index",
            "--seed",
        ])
        settings = settings_from_args(args)

        assert args.transport == "both"
        assert settings.docs_root == tmp_path
        assert settings.http_host == "127.0.0.1"
        assert settings.http_port == 9100
        assert settings.eager_index is False
        assert settings.seed_examples is True

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("JANE_DOCS_ROOT", str(tmp_path / "docs"))
        monkeypatch.setenv("JANE_HTTP_PORT", "9200")

        settings = settings_from_args(build_parser().parse_args([]))

        assert settings.docs_root == tmp_path / "docs"
        assert settings.http_port == 9200

    def test_invalid_transport(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--transport", "carrier-pigeon"])
