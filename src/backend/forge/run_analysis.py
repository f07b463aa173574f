"""
Analyze a text file from the command line.

Runs the full pipeline against the configured connection (FORGE_* env vars
or .env) and writes the result as JSON.

Examples:
  python -m forge.run_analysis essay.txt
  python -m forge.run_analysis essay.txt --grammar --deep-research --output result.json
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from forge.agent.orchestrator import AnalysisOrchestrator
from forge.agent.refinement import sort_by_severity
from forge.agent.scheduler import AllSpecialistsFailedError
from forge.config import settings
from forge.models.schemas import AnalysisOptions, AnalysisResult, ConnectionConfig, RunEvent

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Forge writing analysis",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1],
    )
    parser.add_argument("file", type=Path, help="Text file to analyze")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here (default: stdout)")

    options_group = parser.add_argument_group("Analysis options")
    options_group.add_argument("--grammar", action="store_true", help="Add the grammar & mechanics pass")
    options_group.add_argument("--deep-research", action="store_true", help="Allow research sub-agents")
    options_group.add_argument("--no-web-search", action="store_true", help="Disable web search")
    options_group.add_argument("--math-web-search", action="store_true", help="Let the math specialist search")
    return parser


def options_from_args(args: argparse.Namespace) -> AnalysisOptions:
    return AnalysisOptions(
        web_search=not args.no_web_search,
        deep_research=args.deep_research,
        grammar=args.grammar,
        math_web_search=args.math_web_search,
    )


def _print_event(event: RunEvent) -> None:
    detail = event.detail
    extra = ""
    if detail.subagent:
        extra = f" sub-agent #{detail.subagent_count}: {detail.subagent}"
    elif detail.error:
        extra = f" {detail.error}"
    elif detail.items:
        extra = f" {detail.items} items"
    print(f"  [{event.status.value:>8}] {event.agent_key}{extra}", file=sys.stderr)


def print_summary(result: AnalysisResult) -> None:
    print("=" * 70, file=sys.stderr)
    for item in sort_by_severity(result.feedback):
        anchored = "" if item.id in result.positions else " (unanchored)"
        print(f"  #{item.id:<3} {item.severity:<10} {item.title}{anchored}", file=sys.stderr)
    usage = result.usage
    print(f"\n  Items:        {len(result.feedback)} ({result.grammar_count} grammar)", file=sys.stderr)
    print(f"  Tokens:       {usage.input_tokens} in / {usage.output_tokens} out", file=sys.stderr)
    print(f"  Web searches: {usage.web_searches}   Sub-agents: {usage.subagents}", file=sys.stderr)
    print(f"  Time:         {result.total_time_seconds}s   Est. cost: {result.cost_estimate}", file=sys.stderr)
    print(f"\n  {'Step':<32} {'Model':<28} {'In':>7} {'Out':>6} {'Latency':>9}", file=sys.stderr)
    for call in usage.calls:
        print(
            f"  {call.step_name:<32} {call.model:<28} "
            f"{call.input_tokens:>7} {call.output_tokens:>6} {call.latency_ms:>7}ms",
            file=sys.stderr,
        )
    print("=" * 70, file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    document = args.file.read_text(encoding="utf-8")
    connection = ConnectionConfig.from_settings()
    if not connection.is_ready:
        logger.error(f"Connection '{connection.mode.value}' is not configured; set FORGE_ANTHROPIC_API_KEY or FORGE_PROXY_URL")
        return 2

    orchestrator = AnalysisOrchestrator(connection)
    try:
        result = await orchestrator.run(document, options_from_args(args), on_event=_print_event)
    except AllSpecialistsFailedError as e:
        logger.error(str(e))
        return 1

    print_summary(result)
    payload = json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        print(f"\n  Result saved to: {args.output}", file=sys.stderr)
    else:
        print(payload)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
