"""FastMCP server exposing recommendations and GM tactics as MCP tools.

Tools:
  - recommend_entities(session_id, entity_type, max_recommendations)
  - get_gm_tactics(session_id)
  - update_gm_tactics(session_id, tactics_level?, primary_focus?, teamwork?)

Tools use the services set up by init_services(); tests initialise them
through the root conftest.

Usage:
    uv run python -m backend.mcp_server
"""

from mcp.server.fastmcp import FastMCP

from backend.services import get_services

mcp = FastMCP("gm-director")


@mcp.tool()
async def recommend_entities(session_id: str, entity_type: str, max_recommendations: int = 5) -> dict:
    """Recommend entities of one type (item, quest, event, npc, enemy) for a session."""
    services = get_services()
    context = services.context_for(session_id)
    result = await services.engine.recommend(entity_type, context, max_recommendations)
    return result.model_dump(by_alias=True, mode="json")


@mcp.tool()
def get_gm_tactics(session_id: str) -> dict:
    """Return the GM's current tactics for a session."""
    return get_services().tactics.get_current(session_id).model_dump(by_alias=True)


@mcp.tool()
def update_gm_tactics(
    session_id: str,
    tactics_level: str | None = None,
    primary_focus: str | None = None,
    teamwork: bool | None = None,
) -> dict:
    """Change some of the GM's tactics for a session. Returns the new settings."""
    partial = {
        key: value for key, value in (
            ("tacticsLevel", tactics_level),
            ("primaryFocus", primary_focus),
            ("teamwork", teamwork),
        ) if value is not None
    }
    return get_services().tactics.update(session_id, partial).model_dump(by_alias=True)


if __name__ == "__main__":
    import os
    from pathlib import Path

    from dotenv import load_dotenv

    from backend.services import init_services

    load_dotenv(Path(__file__).parent.parent / ".env")
    init_services(Path(os.getenv("DATA_DIR", str(Path(__file__).parent.parent / "data"))))
    mcp.run()
