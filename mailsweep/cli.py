#!/usr/bin/env python3
"""
mailsweep - find the senders filling your Gmail and trash everything they sent
"""

import argparse
import logging
from typing import Callable, Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mailsweep.auth import obtain_transport
from mailsweep.config import load_settings
from mailsweep.deleter import FixedPacer, build_pacer, delete_all
from mailsweep.errors import AuthError, ConfigError, DeletionError, FetchError
from mailsweep.harvester import aggregate, rank_senders
from mailsweep.models import DeletionOutcome, SenderRecord
from mailsweep.transport import GmailTransport


logger = logging.getLogger(__name__)

console = Console()

YES = {'yes', 'y'}
NO = {'no', 'n'}
QUIT = {'quit', 'q'}


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


# === Output ===

def print_ranking(ranked: List[SenderRecord], out: Console = console) -> None:
    table = Table(title="Top email senders", show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right", style="dim", width=5)
    table.add_column("Sender", style="cyan")
    table.add_column("Emails", justify="right", style="green", width=10)

    for position, record in enumerate(ranked, 1):
        table.add_row(str(position), escape(record.sender_identity), f"{record.count:,}")

    out.print(table)


def print_deletion_summary(outcome: DeletionOutcome, out: Console = console) -> None:
    out.print("\n[bold cyan]Deletion Summary:[/bold cyan]")
    out.print(f"  [green]Successfully deleted: {outcome.succeeded:,} emails[/green]")

    if outcome.failures:
        out.print(f"  [red]Failed to delete: {outcome.failed:,} emails[/red]")
        out.print("  Error details:")
        for failure in outcome.failures:
            out.print(f"    - {failure.message_id}: {failure.reason}")


# === Interactive Selection ===

def ask_action(record: SenderRecord, ask: Callable[[str], str], out: Console = console) -> str:
    """Ask until the answer is yes, no or quit. End of input counts as quit."""
    question = f"Would you like to delete all emails from [bold]{escape(record.sender_identity)}[/bold]? (yes/no/quit): "

    while True:
        try:
            answer = ask(question).strip().lower()
        except EOFError:
            return 'quit'

        if answer in YES:
            return 'yes'
        if answer in NO:
            return 'no'
        if answer in QUIT:
            return 'quit'
        out.print("[yellow]Please enter 'yes', 'no' or 'quit'. Retrying current sender.[/yellow]")


def selection_loop(
    transport: GmailTransport,
    ranked: List[SenderRecord],
    pacer: FixedPacer,
    ask: Optional[Callable[[str], str]] = None,
    out: Console = console
) -> Dict[str, DeletionOutcome]:
    """Offer each sender in rank order, returns the outcome per deleted sender"""
    ask = ask or out.input
    results: Dict[str, DeletionOutcome] = {}

    for position, record in enumerate(ranked, 1):
        out.print(f"\n{position}. [cyan]{escape(record.sender_identity)}[/cyan] ({record.count:,} emails)")
        action = ask_action(record, ask, out)

        if action == 'quit':
            out.print("Quitting")
            break
        if action == 'no':
            continue

        out.print(f"Deleting emails from {escape(record.sender_identity)}...")
        try:
            outcome = delete_all(transport, record.message_ids, pacer=pacer)
        except DeletionError as error:
            outcome = error.outcome
            print_deletion_summary(outcome, out)
            out.print(f"[red]Error deleting emails: {error}[/red]")
        else:
            print_deletion_summary(outcome, out)
            out.print(f"[green]Successfully deleted {outcome.succeeded:,} emails from {escape(record.sender_identity)}[/green]")

        results[record.sender_identity] = outcome

    return results


# === Entry Point ===

def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a whole number, got {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Rank Gmail senders by volume and trash everything from the ones you pick'
    )
    parser.add_argument('--credentials', dest='credentials_path', type=str,
                        help='OAuth client file (default: GMAIL_CREDENTIALS_PATH or credentials.json)')
    parser.add_argument('--token', dest='token_path', type=str,
                        help='Token cache file (default: GMAIL_TOKEN_PATH or token.json)')
    parser.add_argument('--port', dest='callback_port', type=int,
                        help='Local OAuth callback port, must match the registered redirect URI (default: 8080)')
    parser.add_argument('--page-size', dest='page_size', type=int,
                        help='Messages per listing page (default: 100)')
    parser.add_argument('--pacing', choices=['fixed', 'adaptive'],
                        help='Deletion pacing policy (default: adaptive)')
    parser.add_argument('--top', type=positive_int, help='Only offer the N biggest senders')
    parser.add_argument('--report-only', action='store_true',
                        help='Print the sender ranking and exit without deleting anything')
    parser.add_argument('--log-level', dest='log_level', type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level (default: LOG_LEVEL or INFO)')
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    settings = load_settings(
        credentials_path=args.credentials_path,
        token_path=args.token_path,
        callback_port=args.callback_port,
        page_size=args.page_size,
        pacing=args.pacing,
        log_level=args.log_level
    )
    configure_logging(settings.log_level)
    logger.info(f"Starting mailsweep with log level: {settings.log_level}")

    transport = obtain_transport(settings, console=console)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task("Scanning mailbox...", total=None)

        def on_progress(event: str, data: Dict) -> None:
            if event == 'page_fetched':
                progress.update(task, description=(
                    f"Scanned {data['processed_messages']:,} messages "
                    f"from {data['unique_senders']:,} senders..."
                ))

        harvest = aggregate(transport, settings.page_size, on_progress)

    console.print(f"\n[bold green]Scan complete:[/bold green] {harvest.message_count:,} messages "
                  f"from {len(harvest.senders):,} senders")
    if harvest.dropped_count:
        console.print(f"[yellow]{harvest.dropped_count:,} messages could not be read and were skipped[/yellow]")

    ranked = rank_senders(harvest.senders)
    if args.top:
        ranked = ranked[:args.top]

    if not ranked:
        console.print("[yellow]No messages found.[/yellow]")
        return 0

    print_ranking(ranked, console)

    if args.report_only:
        return 0

    selection_loop(transport, ranked, build_pacer(settings), out=console)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()
    args = parse_args(argv)

    try:
        return run(args)
    except ConfigError as error:
        console.print(f"[red]Configuration error: {error}[/red]")
    except AuthError as error:
        console.print(f"[red]Could not get authenticated client: {error}[/red]")
    except FetchError as error:
        console.print(f"[red]Unable to get sender statistics: {error}[/red]")
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        return 130
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
