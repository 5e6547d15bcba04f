"""Citewise - cited answers from live web search

Simple CLI for asking one question.
"""

import argparse
import asyncio

from citewise.agents.orchestrator import AnswerOrchestrator
from citewise.models.search import OptimizationMode, SearchRequest
from citewise.services.persistence import MemoryChatStore


async def run_answer(
    query: str,
    mode: str = OptimizationMode.BALANCED.value,
    urls: list[str] | None = None,
    model: str | None = None,
) -> int:
    """Stream an answer to stdout. Returns a process exit code."""
    print(f"Query: {query} ({mode})")
    print("-" * 50)

    request = SearchRequest(
        raw_query=query,
        optimization_mode=OptimizationMode(mode),
        explicit_urls=frozenset(urls or ()),
    )
    orchestrator = AnswerOrchestrator(model=model, store=MemoryChatStore())

    try:
        return await _print_events(orchestrator, request)
    finally:
        await orchestrator.aclose()


async def _print_events(orchestrator: AnswerOrchestrator, request: SearchRequest) -> int:
    sources: list[dict] = []
    async for event in orchestrator.answer(request):
        event_type = event.event.value
        data = event.data

        if event_type == "sources":
            sources = data.get("sources", [])
            print(f"[*] {len(sources)} sources\n")

        elif event_type == "data":
            print(data.get("text", ""), end="", flush=True)

        elif event_type == "end":
            print(f"\n\n{'='*50}")
            print("SOURCES:")
            for i, source in enumerate(sources, 1):
                print(f"  [{i}] {source.get('title') or source.get('url')}")
                print(f"      {source.get('url')}")
            if data.get("runtime_ms") is not None:
                print(f"\nRuntime: {data['runtime_ms']}ms")
            return 0

        elif event_type == "error":
            print(f"\n[!] Error: {data.get('message', 'Unknown error')}")
            return 1
    return 1


def main():
    parser = argparse.ArgumentParser(description="Citewise answer engine")
    parser.add_argument("--query", "-q", required=True, help="Question to answer")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in OptimizationMode],
        default=OptimizationMode.BALANCED.value,
        help="Optimization mode (selects search providers)",
    )
    parser.add_argument(
        "--url",
        "-u",
        action="append",
        default=[],
        help="Page to answer from instead of searching (repeatable)",
    )
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")

    args = parser.parse_args()

    raise SystemExit(asyncio.run(run_answer(args.query, args.mode, args.url, args.model)))


if __name__ == "__main__":
    main()
