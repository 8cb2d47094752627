"""webground - web evidence retrieval

Simple CLI for running the web search pipeline on one prompt.
"""

import argparse
import asyncio
import json

from webground.models.pipeline import PageFetchProgress
from webground.pipeline.orchestrator import PipelineOptions, run_web_search_pipeline


def _print_progress(progress: PageFetchProgress) -> None:
    print(f"\r[~] Pages fetched: {progress.searched}", end="", flush=True)


async def run_search(prompt: str, top_k: int | None = None, allow_skip: bool = True, as_json: bool = False):
    """Run the pipeline on the given prompt and print the evidence."""
    overrides = {"allow_skip": allow_skip}
    if top_k is not None:
        overrides["top_k"] = top_k
    if not as_json:
        overrides["on_progress"] = _print_progress
        print(f"Prompt: {prompt}")
        print("-" * 50)

    result = await run_web_search_pipeline(prompt, PipelineOptions.from_settings(**overrides))

    if as_json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    print()
    if result.skipped:
        print(f"[*] Web search skipped: {result.skip_reason}")
        return

    print(f"[*] Queries: {', '.join(result.queries)}")
    print(f"[*] Enough evidence: {result.gate.enough_evidence} (expanded: {result.expanded})")
    if result.gate.error:
        print(f"[!] Gate error: {result.gate.error}")
    for i, chunk in enumerate(result.chunks, 1):
        print(f"\n{i}. [{chunk.kind}] {chunk.title or chunk.url} ({chunk.score:.3f})")
        print(f"   {chunk.url}")
        print(f"   {chunk.text[:200]}...")
    cost = result.cost
    print(f"\n{'='*50}")
    print(
        f"SERP calls: {cost.serp_requests} (+{cost.serp_cache_hits} cached) | "
        f"Pages: {cost.page_fetches} (+{cost.page_cache_hits} cached) | "
        f"Unlocker: {cost.unlocker_requests} | Embedding calls: {cost.embedding_requests} | "
        f"Est. ${cost.estimated_usd:.4f}"
    )


def main():
    parser = argparse.ArgumentParser(description="webground web evidence retrieval")
    parser.add_argument("prompt", help="User prompt to gather evidence for")
    parser.add_argument("--top-k", type=int, help="Number of chunks to return (default: from config)")
    parser.add_argument("--no-skip", action="store_true", help="Always search, even if the planner says not to")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")

    args = parser.parse_args()

    asyncio.run(run_search(args.prompt, args.top_k, allow_skip=not args.no_skip, as_json=args.json))


if __name__ == "__main__":
    main()
