"""Tests for the MCP server surface."""

import pytest

from fastmcp import Client
from fastmcp.exceptions import ToolError

from conftest import E_MEETING, FakeEmbeddingService


def _data(result):
    return getattr(result, "data", None) or getattr(result, "structured", None) \
           or getattr(result, "structured_content", None)


@pytest.fixture
def mcp_server():
    from recall.common.config import RecallConfig
    from recall.common.fragment_store import InMemoryFragmentStore
    from recall.tools.server import build_app

    app = build_app(
        config=RecallConfig(),
        store=InMemoryFragmentStore(),
        embedding_service=FakeEmbeddingService(E_MEETING),
        server_name="test-recall",
    )
    return app.mcp


@pytest.mark.asyncio
async def test_tools_registered(mcp_server):
    async with Client(mcp_server) as client:
        tools = await client.list_tools()
        names = {t.name for t in tools}
        assert names == {
            "search_rag", "find_people", "search_emails", "search_calendar",
            "find_mentions", "when_search", "statistics", "upsert_fragment", "delete_source",
        }


@pytest.mark.asyncio
async def test_read_tools_are_annotated_read_only(mcp_server):
    async with Client(mcp_server) as client:
        tools = {t.name: t for t in await client.list_tools()}
        assert tools["search_rag"].annotations.readOnlyHint is True
        assert tools["delete_source"].annotations.destructiveHint is True


@pytest.mark.asyncio
async def test_upsert_then_search(mcp_server):
    async with Client(mcp_server) as client:
        result = await client.call_tool("upsert_fragment", {
            "owner": "u1",
            "source_type": "message",
            "source_id": "m-1",
            "text": "The budget review moved to Thursday",
            "person_name": "Ana Lima",
        })
        data = _data(result)
        assert data["ok"] is True
        assert data["embedded"] is True

        result = await client.call_tool("search_emails", {"owner": "u1", "query": "budget"})
        data = _data(result)
        assert data["ok"] is True
        assert [e["source_id"] for e in data["emails"]] == ["m-1"]

        result = await client.call_tool("search_emails", {"owner": "u2", "query": "budget"})
        assert _data(result)["found"] is False


@pytest.mark.asyncio
async def test_statistics_and_delete(mcp_server):
    async with Client(mcp_server) as client:
        await client.call_tool("upsert_fragment", {
            "owner": "u1", "source_type": "crm_note", "source_id": "c-1", "text": "Prefers email",
        })
        stats = _data(await client.call_tool("statistics", {"owner": "u1"}))
        assert stats["total_fragments"] == 1
        assert stats["by_source"] == {"crm_note": 1}

        deleted = _data(await client.call_tool("delete_source", {
            "owner": "u1", "source_type": "crm_note", "source_id": "c-1",
        }))
        assert deleted == {"ok": True, "deleted": 1}


@pytest.mark.asyncio
async def test_invalid_arguments_come_back_as_errors(mcp_server):
    async with Client(mcp_server) as client:
        result = await client.call_tool("search_rag", {"owner": "u1", "query": "x", "search_type": "fuzzy"})
        data = _data(result)
        assert data["ok"] is False
        assert data["error_kind"] == "input"


@pytest.mark.asyncio
async def test_empty_owner_is_rejected(mcp_server):
    async with Client(mcp_server) as client:
        with pytest.raises(ToolError):
            await client.call_tool("statistics", {"owner": "  "})
