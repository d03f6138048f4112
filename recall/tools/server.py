"""
Recall MCP Server

Exposes the retrieval tools over the Model Context Protocol (stdio).
Every tool is owner-scoped: the orchestrator passes the tenant id with each
call and the server never mixes fragments across owners.

Usage:
    python -m recall.tools.server --server-name recall
"""

import argparse
import logging
import os
import signal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import Field
from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from mcp.types import ToolAnnotations

from ..common.config import RecallConfig, load_config
from ..common.embedding_service import EmbeddingService, get_embedding_service
from ..common.fragment_store import FragmentStore, InMemoryFragmentStore
from ..retriever.engine import RetrievalEngine
from .handlers import RecallTools

logger = logging.getLogger("recall.server")

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)


class RecallServerApp:
    """
    FastMCP application wrapping RecallTools.
    """

    def __init__(
        self,
        tools: RecallTools,
        mcp_server_name: str = "recall",
    ) -> None:
        """
        Args:
            tools: Tool executors bound to an engine and store
            mcp_server_name (str): Advertised MCP server name
        """
        self.tools = tools
        self.mcp = FastMCP(name=mcp_server_name)

        def _require_owner(owner: str) -> str:
            owner = (owner or "").strip()
            if not owner:
                raise ToolError("`owner` is required")
            return owner

        # ---------- MCP Tools: Search ---------- #
        @self.mcp.tool(
            name="search_rag",
            description=(
                "Search the user's messages, calendar events and CRM notes and return a cited answer. "
                "search_type forces a strategy: general, person, temporal, contact, scheduling."
            ),
            annotations=READ_ONLY,
        )
        async def tool_search_rag(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            query: Annotated[str, Field(description="natural-language question")],
            search_type: Annotated[str, Field(description="general | person | temporal | contact | scheduling")] = "general",
            max_results: Annotated[int, Field(description="maximum number of fragments to use", ge=1, le=50)] = 10,
            time_range: Annotated[Optional[str], Field(description="recent | this_week | this_month | this_year")] = None,
            style: Annotated[str, Field(description="comprehensive | concise | bullet_points | conversational")] = "comprehensive",
        ) -> Dict[str, Any]:
            return await self.tools.search_rag(
                _require_owner(owner), query,
                search_type=search_type, max_results=max_results, time_range=time_range, style=style,
            )

        # ---------- MCP Tools: People ---------- #
        @self.mcp.tool(
            name="find_people",
            description="Find a person by name or email, with recent communications involving them.",
            annotations=READ_ONLY,
        )
        async def tool_find_people(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            person_identifier: Annotated[str, Field(description="name, email address or identifier of the person")],
            include_communications: Annotated[bool, Field(description="include recent messages with this person")] = True,
            max_communications: Annotated[int, Field(description="maximum number of messages to include", ge=1, le=50)] = 5,
        ) -> Dict[str, Any]:
            return await self.tools.find_people(
                _require_owner(owner), person_identifier,
                include_communications=include_communications, max_communications=max_communications,
            )

        # ---------- MCP Tools: Emails ---------- #
        @self.mcp.tool(
            name="search_emails",
            description="Search message fragments, optionally filtered by sender and date range.",
            annotations=READ_ONLY,
        )
        async def tool_search_emails(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            query: Annotated[str, Field(description="search terms")],
            sender: Annotated[Optional[str], Field(description="sender email or name")] = None,
            date_range: Annotated[Optional[str], Field(description="last_week | last_month | last_quarter | custom")] = None,
            custom_start_date: Annotated[Optional[str], Field(description="YYYY-MM-DD, required when date_range is custom")] = None,
            custom_end_date: Annotated[Optional[str], Field(description="YYYY-MM-DD, required when date_range is custom")] = None,
            max_results: Annotated[int, Field(description="maximum number of results", ge=1, le=50)] = 10,
        ) -> Dict[str, Any]:
            return await self.tools.search_emails(
                _require_owner(owner), query,
                sender=sender, date_range=date_range,
                custom_start_date=custom_start_date, custom_end_date=custom_end_date,
                max_results=max_results,
            )

        # ---------- MCP Tools: Calendar ---------- #
        @self.mcp.tool(
            name="search_calendar",
            description="Search calendar event fragments by terms, attendees, event type and date range.",
            annotations=READ_ONLY,
        )
        async def tool_search_calendar(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            query: Annotated[str, Field(description="search terms")],
            attendees: Annotated[Optional[List[str]], Field(description="attendee emails or names")] = None,
            date_range: Annotated[Optional[str], Field(description="this_week | this_month | this_year | custom")] = None,
            custom_start_date: Annotated[Optional[str], Field(description="YYYY-MM-DD")] = None,
            custom_end_date: Annotated[Optional[str], Field(description="YYYY-MM-DD")] = None,
            event_type: Annotated[Optional[str], Field(description="meeting | call | appointment | deadline")] = None,
            max_results: Annotated[int, Field(description="maximum number of events", ge=1, le=50)] = 10,
        ) -> Dict[str, Any]:
            return await self.tools.search_calendar(
                _require_owner(owner), query,
                attendees=attendees, date_range=date_range,
                custom_start_date=custom_start_date, custom_end_date=custom_end_date,
                event_type=event_type, max_results=max_results,
            )

        # ---------- MCP Tools: Mentions ---------- #
        @self.mcp.tool(
            name="find_mentions",
            description="Find who mentioned a person, topic or thing, grouped by person.",
            annotations=READ_ONLY,
        )
        async def tool_find_mentions(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            target: Annotated[str, Field(description="the person, topic or thing that was mentioned")],
            context: Annotated[Optional[str], Field(description="extra words describing the mentions")] = None,
            time_range: Annotated[Optional[str], Field(description="recent | this_week | this_month | this_year")] = None,
            max_results: Annotated[int, Field(description="maximum number of mentions", ge=1, le=50)] = 10,
        ) -> Dict[str, Any]:
            return await self.tools.find_mentions(
                _require_owner(owner), target,
                context=context, time_range=time_range, max_results=max_results,
            )

        # ---------- MCP Tools: When ---------- #
        @self.mcp.tool(
            name="when_search",
            description="Answer 'when' questions with a timeline of matching fragments.",
            annotations=READ_ONLY,
        )
        async def tool_when_search(
            owner: Annotated[str, Field(description="tenant id whose data is searched")],
            query: Annotated[str, Field(description="what happened or will happen")],
            timeframe: Annotated[str, Field(description="recent | this_week | this_month | last_month | this_year | all_time")] = "recent",
            max_results: Annotated[int, Field(description="maximum number of events", ge=1, le=50)] = 10,
        ) -> Dict[str, Any]:
            return await self.tools.when_search(
                _require_owner(owner), query, timeframe=timeframe, max_results=max_results,
            )

        # ---------- MCP Tools: Statistics ---------- #
        @self.mcp.tool(
            name="statistics",
            description="Fragment counts for the owner: total, per source, recent, unique people.",
            annotations=READ_ONLY,
        )
        async def tool_statistics(
            owner: Annotated[str, Field(description="tenant id")],
        ) -> Dict[str, Any]:
            return self.tools.statistics(_require_owner(owner))

        # ---------- MCP Tools: Ingest ---------- #
        @self.mcp.tool(
            name="upsert_fragment",
            description="Store or replace the fragment for a source record (owner, source_type, source_id).",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=False, idempotentHint=True),
        )
        async def tool_upsert_fragment(
            owner: Annotated[str, Field(description="tenant id")],
            source_type: Annotated[str, Field(description="message | calendar_event | crm_contact | crm_note | document")],
            source_id: Annotated[str, Field(description="identifier of the original record")],
            text: Annotated[str, Field(description="fragment text")],
            person_email: Annotated[Optional[str], Field(description="email of the person the record is about")] = None,
            person_name: Annotated[Optional[str], Field(description="name of the person the record is about")] = None,
            metadata: Annotated[Optional[Dict[str, Any]], Field(description="free-form metadata")] = None,
            created_at: Annotated[Optional[str], Field(description="ISO timestamp of the record")] = None,
        ) -> Dict[str, Any]:
            return self.tools.upsert_fragment(
                _require_owner(owner), source_type, source_id, text,
                person_email=person_email, person_name=person_name,
                metadata=metadata, created_at=created_at,
            )

        @self.mcp.tool(
            name="delete_source",
            description="Delete every fragment of a source record.",
            annotations=ToolAnnotations(readOnlyHint=False, destructiveHint=True),
        )
        async def tool_delete_source(
            owner: Annotated[str, Field(description="tenant id")],
            source_type: Annotated[str, Field(description="source type of the record")],
            source_id: Annotated[str, Field(description="identifier of the original record")],
        ) -> Dict[str, Any]:
            return self.tools.delete_source(_require_owner(owner), source_type, source_id)

    def run(self) -> None:
        """Runs the MCP server using stdio transport."""
        self.mcp.run(transport="stdio")


def build_app(
    config: Optional[RecallConfig] = None,
    store: Optional[FragmentStore] = None,
    embedding_service: Optional[EmbeddingService] = None,
    server_name: Optional[str] = None,
) -> RecallServerApp:
    """Wire config, store, embedder, engine and tools into a server app"""
    config = config or load_config()
    store = store or InMemoryFragmentStore()
    engine = RetrievalEngine(store, embedding_service=embedding_service, config=config.retrieval)
    tools = RecallTools(engine, embedding_service=embedding_service)
    return RecallServerApp(tools, mcp_server_name=server_name or config.server.name)


def main() -> None:
    load_dotenv()
    config = load_config()

    parser = argparse.ArgumentParser(description="Run the Recall MCP server (stdio).")
    parser.add_argument(
        "--server-name",
        default=os.getenv("RECALL_SERVER_NAME", config.server.name),
        help="Advertised MCP server name.",
    )
    parser.add_argument(
        "--embedding-mode",
        default=config.embedding.mode,
        choices=("femb", "none"),
        help="Embedding backend; 'none' runs keyword-only.",
    )
    parser.add_argument(
        "--embedding-model",
        default=config.embedding.model,
        help="Embedding model name.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("RECALL_LOG_LEVEL", "INFO"),
        help="Logging level.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    embedding_service = None
    if args.embedding_mode == "femb":
        embedding_service = get_embedding_service(mode="femb", model=args.embedding_model)
        logger.info("Embedding model: %s", args.embedding_model)
    else:
        logger.info("Embeddings disabled - keyword retrieval only")

    app = build_app(config=config, embedding_service=embedding_service, server_name=args.server_name)

    def _handle_shutdown(signum, frame):
        raise SystemExit(0)
    for sig in (signal.SIGINT, getattr(signal, "SIGTERM", None)):
        if sig is not None:
            signal.signal(sig, _handle_shutdown)

    app.run()


if __name__ == "__main__":
    main()
