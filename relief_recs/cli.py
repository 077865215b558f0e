"""
Command-line interface.

Usage:
    # One recommendation against the live directory
    relief-recs recommend --country Turkey --disaster earthquake --cause disaster-relief

    # Include the debug block
    relief-recs recommend --country Turkey --disaster earthquake --debug

    # Serve the API
    relief-recs serve --host 0.0.0.0 --port 8000
"""

import argparse
import json
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import EngineConfig
from .errors import AllSourcesFailed
from .recommendations.models import RecommendationRequest
from .recommendations.orchestrator import RecommendationOrchestrator
from .utils.logger import configure_global_logging, get_logger

console = Console()


def _build_request(args: argparse.Namespace) -> RecommendationRequest:
    return RecommendationRequest(
        title=args.title or f"{args.disaster or 'Crisis'} in {args.country or 'unknown location'}",
        entities={
            "geography": {"country": args.country, "region": args.region, "city": args.city},
            "disaster_type": args.disaster,
            "affected_groups": args.group or [],
            "causes": args.cause or [],
            "keywords": args.keyword or [],
        },
        debug=args.debug,
        top_n=args.top,
    )


def _render(response, debug: bool) -> None:
    if not response.nonprofits:
        console.print("[yellow]No organizations matched this crisis[/yellow]")
        return

    table = Table(title="Recommendations", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Organization")
    table.add_column("Tier", justify="center")
    table.add_column("Cause", justify="center")
    table.add_column("Trust", justify="right")
    table.add_column("Location")
    table.add_column("Profile")

    for i, view in enumerate(response.nonprofits, start=1):
        trust = f"{view.trust_score:.0f}" if view.trust_score is not None else "-"
        name = f"{view.name} [dim](mismatch)[/dim]" if view.cause_mismatch else view.name
        table.add_row(str(i), name, str(view.geo_tier), str(view.cause_level), trust, view.location or "-", view.profile_url or "-")

    console.print(table)

    for i, view in enumerate(response.nonprofits, start=1):
        console.print(f"[bold]{i}. {view.name}[/bold]: " + "; ".join(view.reasons))

    if debug and response.debug:
        console.print(
            Panel(
                json.dumps(response.debug.model_dump(by_alias=True), indent=2),
                title="Debug",
                border_style="blue",
            )
        )


def cmd_recommend(args: argparse.Namespace) -> int:
    """Run one recommendation and print it."""
    config = EngineConfig.from_env()
    if not config.api_key:
        console.print("[red]Error: EVERY_ORG_API_PUBLIC_KEY is not set[/red]")
        return 1

    logger = get_logger(log_level="DEBUG" if args.verbose else "WARNING")
    orchestrator = RecommendationOrchestrator(config=config, logger=logger)

    try:
        response = orchestrator.recommend(_build_request(args))
    except AllSourcesFailed as e:
        console.print(f"[red]All directory sources failed:[/red] {e}")
        for failure in e.failures:
            console.print(f"  [dim]{failure}[/dim]")
        return 2

    _render(response, args.debug)
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    import uvicorn

    configure_global_logging(args.log_level)
    uvicorn.run(
        "relief_recs.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Crisis nonprofit recommendations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    rec_parser = subparsers.add_parser("recommend", help="Recommend organizations for a crisis")
    rec_parser.add_argument("--country", help="Affected country (e.g., Turkey)")
    rec_parser.add_argument("--region", help="Affected region or state")
    rec_parser.add_argument("--city", help="Affected city")
    rec_parser.add_argument("--disaster", help="Disaster type (e.g., earthquake)")
    rec_parser.add_argument("--group", action="append", help="Affected group (repeatable)")
    rec_parser.add_argument("--cause", action="append", help="Cause slug (repeatable, e.g., disaster-relief)")
    rec_parser.add_argument("--keyword", action="append", help="Crisis keyword (repeatable)")
    rec_parser.add_argument("--title", help="Article title (informational)")
    rec_parser.add_argument("--top", type=int, default=10, choices=range(1, 11), metavar="N", help="Results (1-10)")
    rec_parser.add_argument("--debug", action="store_true", help="Show the debug block")
    rec_parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--log-level", default="INFO")

    args = parser.parse_args()

    if args.command == "recommend":
        return cmd_recommend(args)
    elif args.command == "serve":
        return cmd_serve(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
