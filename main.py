"""Deep Research - command line entry point.

Runs a single research query and prints the result as JSON.
"""

import argparse
import asyncio
import json
import sys

from deep_research.agents.orchestrator import research
from deep_research.models.schemas import DEFAULT_CONFIG


async def run_research(query: str, agent_id: str, timeout_ms: int | None = None, max_pages: int | None = None) -> dict:
    """Run research on the given query and return the response envelope."""
    overrides = {}
    if timeout_ms is not None:
        overrides["timeout_ms"] = timeout_ms
    if max_pages is not None:
        overrides["max_pages_to_fetch"] = max_pages
    config = DEFAULT_CONFIG.model_copy(update=overrides)

    try:
        result = await research(query, agent_id, config=config)
    except Exception as e:
        return {"success": False, "error": str(e)}
    return {"success": True, "result": result.to_dict()}


def main():
    parser = argparse.ArgumentParser(description="Deep Research Tool")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--agent", "-a", default="default", help="Agent id recorded in the logs")
    parser.add_argument("--timeout-ms", type=int, help="Overall deadline in milliseconds")
    parser.add_argument("--max-pages", type=int, help="Maximum pages to fetch")

    args = parser.parse_args()

    envelope = asyncio.run(run_research(args.query, args.agent, args.timeout_ms, args.max_pages))
    print(json.dumps(envelope, indent=2))
    if not envelope["success"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
