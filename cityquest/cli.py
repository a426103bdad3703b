#!/usr/bin/env python3
"""CityQuest CLI.

Usage:
    cityquest serve [--host 127.0.0.1] [--port 8000]
    cityquest explore "Lisbon" [--server http://127.0.0.1:8000]

Environment variables (alternative to args):
    OPENAI_API_KEY        Provider credential (server side)
    HOST / PORT           Server bind address
    CITYQUEST_SERVER_URL  Server used by `explore`
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from rich.console import Console

from .client import CityQuestClient
from .config import AppConfig, load_config
from .errors import CityQuestError
from .interpreter import Intent
from .models import AdventureCard, CardEnvelope, ImageFailedEnvelope, ImageReadyEnvelope
from .session import ExplorerSession
from .store import AdventureStatus, AdventureStore

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
log = logging.getLogger("cityquest")

console = Console()


class ConsoleStore(AdventureStore):
    """AdventureStore that prints each change as it is applied."""

    def apply(self, envelope) -> None:
        super().apply(envelope)
        if isinstance(envelope, CardEnvelope):
            _print_card(len(self) - 1, envelope.card)
        elif isinstance(envelope, ImageReadyEnvelope):
            console.print(f"  [dim]image ready for {envelope.card_id}: {envelope.url}[/dim]")
        elif isinstance(envelope, ImageFailedEnvelope):
            console.print(f"  [yellow]no image for {envelope.card_id}[/yellow]")


def _print_card(index: int, card: AdventureCard) -> None:
    label = "Landmark" if card.kind.value == "landmark" else "Clue"
    console.print(f"\n[bold cyan]{index + 1}. {label}: {card.title}[/bold cyan]")
    console.print(card.content)


class Explorer:
    """Interactive terminal explorer driving an ExplorerSession."""

    def __init__(self, server_url: str, client: Optional[CityQuestClient] = None):
        self.client = client or CityQuestClient(server_url)
        self.session = ExplorerSession(self.client, store=ConsoleStore())

    async def run(self, city: str) -> int:
        try:
            return await self._run(city)
        finally:
            await self.client.aclose()

    async def _run(self, city: str) -> int:
        console.print(f"[dim]Looking up attractions in {city}...[/dim]")
        try:
            attractions = await self.session.search(city)
        except CityQuestError as e:
            log.error(f"Could not load attractions: {e}")
            return 1

        console.print(f"\n[bold green]Top attractions in {self.session.city.name}[/bold green]")
        for attraction in attractions:
            lon, lat = attraction.coordinates
            console.print(f"  - {attraction.name} [dim]({lat:.4f}, {lon:.4f})[/dim]")

        console.print("\n[dim]Generating your mystery adventure...[/dim]")
        try:
            status = await self.session.start_adventure()
        except CityQuestError as e:
            log.error(f"Adventure failed: {e}")
            return 1
        if status is not AdventureStatus.COMPLETE:
            log.error(f"Adventure failed: {self.session.store.error}")
            return 1

        await self._command_loop()
        return 0

    async def _command_loop(self) -> None:
        console.print("\n[dim]Commands: next, back, quit, or ask anything about the current card.[/dim]")
        self._show_active()

        while True:
            try:
                # Read off the event loop so in-flight streams keep draining
                text = (await asyncio.get_event_loop().run_in_executor(None, input, "You: ")).strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not text:
                continue
            lowered = text.lower()
            if lowered in ("quit", "exit", "/quit", "/exit"):
                break
            if lowered == "next":
                self._move(self.session.advance())
                continue
            if lowered == "back":
                self._move(self.session.back())
                continue

            try:
                before = self.session.active_index
                result = await self.session.handle_command(text, on_fragment=self._print_fragment)
            except CityQuestError as e:
                console.print(f"[red]{e}[/red]")
                continue

            if result.intent is Intent.LEARN_MORE:
                console.print()
            elif result.intent is Intent.ADVANCE:
                self._move(self.session.active_index != before)
            elif result.response_text:
                console.print(f"[cyan]{result.response_text}[/cyan]")

        console.print("[dim]Adventure ended.[/dim]")

    @staticmethod
    def _print_fragment(fragment: str) -> None:
        console.print(fragment, end="", markup=False, highlight=False)

    def _move(self, moved: bool) -> None:
        if moved:
            self._show_active()
        else:
            console.print("[dim]No card in that direction.[/dim]")

    def _show_active(self) -> None:
        card = self.session.active_card
        if card is not None:
            _print_card(self.session.active_index, card)


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="cityquest",
        description="CityQuest - city attractions and streamed mystery adventures",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  cityquest serve --port 8000
  cityquest explore Singapore
  cityquest explore "Ho Chi Minh City" --server http://127.0.0.1:8000
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", parents=[common], help="Run the HTTP server")
    serve.add_argument("--host", help="Host to bind (or set HOST)")
    serve.add_argument("--port", type=int, help="Port to bind (or set PORT)")

    explore = sub.add_parser("explore", parents=[common], help="Explore a city against a running server")
    explore.add_argument("city", help="City to explore")
    explore.add_argument("--server", help="Server URL (or set CITYQUEST_SERVER_URL)")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config: AppConfig = load_config()

    if args.command == "serve":
        from .server import run_server
        run_server(config.with_overrides(host=args.host, port=args.port))
        return

    server_url = args.server or config.server_url
    try:
        exit_code = asyncio.run(Explorer(server_url).run(args.city))
    except KeyboardInterrupt:
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
