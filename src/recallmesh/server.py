"""RecallMesh HTTP server.

Wraps the RecallMesh library as a Streamable HTTP MCP server using
FastMCP.  The learning scheduler is started alongside the server so the
pattern miner runs in the background.

The server exposes these tools:
  remember, search, predict, suggest, feedback, learning_analyze,
  apply_suggestions, maintenance_suggestions, learning_status,
  relationship_graph

Environment variables:
    PORT                 HTTP port (default: 8080)
    RECALLMESH_DEBUG     Enable debug logging
    RECALLMESH_*         Learning settings, see :mod:`recallmesh.config`
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Annotated, Any, Optional

import uvicorn
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .config import LearningConfig
from .core import RecallMesh
from .memory import DEFAULT_OWNER

# ---------------------------------------------------------------------------
# Logging -- all output goes to stderr
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if os.environ.get("RECALLMESH_DEBUG") else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("recallmesh.server")

# ---------------------------------------------------------------------------
# FastMCP server
# ---------------------------------------------------------------------------

mcp = FastMCP(name="RecallMesh")

# ---------------------------------------------------------------------------
# Shared RecallMesh instance
# ---------------------------------------------------------------------------

_mesh: Optional[RecallMesh] = None


def _get_mesh() -> RecallMesh:
    """Get or create the shared RecallMesh instance."""
    global _mesh
    if _mesh is None:
        config = LearningConfig.from_env()
        _mesh = RecallMesh(config=config)
    return _mesh


OwnerArg = Annotated[str, Field(description="Owner (user or agent) whose memories are used.")]

# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool(annotations=ToolAnnotations(
    title="Remember",
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=False,
    openWorldHint=False,
))
def remember(
    text: Annotated[str, Field(description="The text content to remember.")],
    tags: Annotated[Optional[list[str]], Field(description="Tags to attach to the memory.")] = None,
    metadata: Annotated[Optional[dict[str, Any]], Field(description="Key-value metadata to attach.")] = None,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> str:
    """Store a new memory. Returns its id."""
    memory_id = _get_mesh().remember(text, tags=tags, metadata=metadata, owner_id=owner_id)
    return f"Remembered (id={memory_id}): {text[:80]}"


@mcp.tool(annotations=ToolAnnotations(
    title="Search",
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=False,
    openWorldHint=False,
))
def search(
    query: Annotated[str, Field(description="Search text.")],
    limit: Annotated[int, Field(description="Maximum number of memories to return. Default: 10.")] = 10,
    weight_by_usage: Annotated[bool, Field(description="Blend in usage, recency and helpfulness with the learned weights.")] = False,
    decay_old_memories: Annotated[bool, Field(description="Boost memories read within 7 days and penalise those untouched for 90+ days.")] = False,
    learning_mode: Annotated[bool, Field(description="Record the returned memories as used.")] = False,
    min_helpfulness_score: Annotated[Optional[float], Field(description="Drop memories below this helpfulness (0-1).")] = None,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Search memories and rank them with usage-aware scoring."""
    result = _get_mesh().search(
        query,
        limit=limit,
        weight_by_usage=weight_by_usage,
        decay_old_memories=decay_old_memories,
        learning_mode=learning_mode,
        min_helpfulness_score=min_helpfulness_score,
        owner_id=owner_id,
    )
    return result.to_dict()


@mcp.tool(annotations=ToolAnnotations(
    title="Predict",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def predict(
    recent_memories: Annotated[Optional[list[str]], Field(description="Ids of memories used recently.")] = None,
    context: Annotated[Optional[str], Field(description="What the agent is currently doing.")] = None,
    limit: Annotated[int, Field(description="Maximum number of predictions. Default: 10.")] = 10,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Predict which memories will be needed next."""
    predictions = _get_mesh().predict(recent_memories or (), context=context, limit=limit, owner_id=owner_id)
    return {
        "predictions": [p.to_dict() for p in predictions],
        "count": len(predictions),
        "based_on": {"recent_memories": len(recent_memories or []), "has_context": bool(context)},
    }


@mcp.tool(annotations=ToolAnnotations(
    title="Suggest",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def suggest(
    context: Annotated[str, Field(description="What the agent is currently doing.")],
    limit: Annotated[int, Field(description="Maximum number of suggestions. Default: 5.")] = 5,
    min_confidence: Annotated[float, Field(description="Minimum suggestion score (0-1). Default: 0.6.")] = 0.6,
    include_reasoning: Annotated[bool, Field(description="Explain why each memory was suggested.")] = True,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Suggest memories relevant to the current context."""
    result = _get_mesh().suggest(
        context,
        limit=limit,
        min_confidence=min_confidence,
        include_reasoning=include_reasoning,
        owner_id=owner_id,
    )
    data = dict(result)
    data["suggestions"] = [s.to_dict() for s in result["suggestions"]]
    return data


@mcp.tool(annotations=ToolAnnotations(
    title="Feedback",
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=False,
    openWorldHint=False,
))
def feedback(
    memory_id: Annotated[str, Field(description="The memory being rated.")],
    helpful: Annotated[bool, Field(description="Whether the memory helped.")],
    user_satisfaction: Annotated[Optional[float], Field(description="Satisfaction between 0 and 1.")] = None,
    context: Annotated[Optional[str], Field(description="Where the memory was used.")] = None,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Rate a memory. Adjusts its helpfulness and the owner's ranking weights."""
    return _get_mesh().feedback(
        memory_id,
        helpful,
        user_satisfaction=user_satisfaction,
        context=context,
        owner_id=owner_id,
    )


@mcp.tool(annotations=ToolAnnotations(
    title="Learning Analyze",
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def learning_analyze(
    auto_apply: Annotated[bool, Field(description="Persist high-confidence relationship suggestions.")] = False,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Mine usage history for patterns, relationship suggestions and duplicates."""
    return _get_mesh().learning_analyze(auto_apply=auto_apply, owner_id=owner_id).to_dict()


@mcp.tool(annotations=ToolAnnotations(
    title="Apply Suggestions",
    readOnlyHint=False,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def apply_suggestions(
    suggestions: Annotated[list[dict[str, Any]], Field(description="Relationship suggestions from learning_analyze.")],
    min_confidence: Annotated[float, Field(description="Minimum confidence to apply (0-1). Default: 0.75.")] = 0.75,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Create relationship edges from suggestions. Existing edges are left alone."""
    applied = _get_mesh().apply_suggestions(suggestions, min_confidence=min_confidence, owner_id=owner_id)
    return {"applied_count": applied, "total_suggestions": len(suggestions)}


@mcp.tool(annotations=ToolAnnotations(
    title="Maintenance Suggestions",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def maintenance_suggestions(owner_id: OwnerArg = DEFAULT_OWNER) -> dict[str, Any]:
    """List duplicate, outdated and archivable memories and broken relationships."""
    return _get_mesh().maintenance_suggestions(owner_id=owner_id)


@mcp.tool(annotations=ToolAnnotations(
    title="Learning Status",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def learning_status(owner_id: OwnerArg = DEFAULT_OWNER) -> dict[str, Any]:
    """Report scheduler state, learned weights and usage statistics."""
    return _get_mesh().learning_status(owner_id=owner_id)


@mcp.tool(annotations=ToolAnnotations(
    title="Relationship Graph",
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=False,
))
def relationship_graph(
    memory_id: Annotated[str, Field(description="Root memory of the graph.")],
    depth: Annotated[int, Field(description="Hops to expand, at most 3. Default: 1.")] = 1,
    min_strength: Annotated[float, Field(description="Minimum edge strength (0-1). Default: 0.6.")] = 0.6,
    owner_id: OwnerArg = DEFAULT_OWNER,
) -> dict[str, Any]:
    """Show the memories connected to one memory."""
    return _get_mesh().relationship_graph(memory_id, depth=depth, min_strength=min_strength, owner_id=owner_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Start the HTTP server and the learning scheduler."""
    app = mcp.streamable_http_app()

    # CORS for browser-based MCP clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS", "DELETE"],
        allow_headers=["*"],
        expose_headers=["mcp-session-id", "mcp-protocol-version"],
        max_age=86400,
    )

    mesh = _get_mesh()
    mesh.start_scheduler()

    port = int(os.environ.get("PORT", 8080))
    logger.info("RecallMesh MCP server v%s starting on port %d", __version__, port)
    try:
        uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
    finally:
        mesh.close()


if __name__ == "__main__":
    main()
