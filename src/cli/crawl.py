"""CLI commands for driving the pagination engine from a shell."""

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from urllib.parse import urljoin

import click
import structlog
from bs4 import BeautifulSoup

from src.fetch.client import ResilientFetcher
from src.fetch.metrics import FetchMetrics
from src.observability.logging import configure_logging, end_session, start_session
from src.pagination.extract import select_hrefs
from src.pagination.fanout import submit_all
from src.pagination.last_page import LastPageFinder
from src.pagination.source import HtmlPageSource
from src.pagination.walker import PageWalker
from src.progress.sink import ProgressSink
from src.settings import AppSettings, get_settings


logger = structlog.get_logger()

COMPONENT_CLI = "cli"

# Exit status of a failed command
EXIT_FAILURE = 2

SessionAction = Callable[[ResilientFetcher, AppSettings], None]


@dataclass
class SessionOptions:
    """Options shared by every command."""

    json_logs: bool = True
    verbose: bool = False
    show_progress: bool = True


def _open_session(
    options: SessionOptions, command: str
) -> tuple[ResilientFetcher, AppSettings, structlog.typing.FilteringBoundLogger]:
    """Configure logging, load settings and open a fetcher for one session.

    Args:
        options: Shared command options.
        command: Name of the running command.

    Returns:
        The session fetcher, its settings and a logger bound to the session.

    Raises:
        SettingsError: If a CRAWL_* variable is invalid.
    """
    log_level = logging.DEBUG if options.verbose else logging.INFO
    configure_logging(level=log_level, json_format=options.json_logs)

    session_id = start_session(command)

    settings = get_settings()
    fetcher = ResilientFetcher(
        settings.fetch_config(),
        auth_headers=settings.auth_headers(),
        session_id=session_id,
    )

    log = logger.bind(component=COMPONENT_CLI)
    log.info(
        "crawl_session_started",
        base_url=settings.base_url or None,
        delay_interval_ms=settings.delay_interval_ms,
        max_workers=settings.max_workers,
    )
    return fetcher, settings, log  # type: ignore[return-value]


def _run_session(options: SessionOptions, command: str, action: SessionAction) -> None:
    """Open a session and run a command body in it.

    Any failure, including invalid settings, prints one line to stderr and
    exits with status 2.
    """
    try:
        fetcher, settings, log = _open_session(options, command)
        with fetcher:
            action(fetcher, settings)
        log.info(
            "crawl_session_finished", metrics=FetchMetrics.get_instance().to_dict()
        )
    except Exception as e:  # noqa: BLE001
        logger.error(
            "crawl_command_failed",
            component=COMPONENT_CLI,
            error=str(e),
            error_type=type(e).__name__,
        )
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)
    finally:
        end_session()


def _fetch_items(
    fetcher: ResilientFetcher,
    base_url: str,
    hrefs: list[str],
    max_workers: int,
    show_progress: bool,
) -> list[str]:
    """Fetch item pages concurrently.

    Returns:
        One "href<TAB>status<TAB>bytes" line per item, in completion order.
    """

    def fetch_item(href: str) -> str:
        result = fetcher.get(urljoin(base_url, href))
        return f"{href}\t{result.status_code}\t{result.body_size}"

    if not show_progress:
        return submit_all(hrefs, fetch_item, max_workers=max_workers)
    with ProgressSink("Items", total=len(hrefs)) as progress:
        return submit_all(
            hrefs, fetch_item, max_workers=max_workers, progress=progress
        )


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--json-logs/--no-json-logs",
    default=True,
    help="Use JSON format for logs (default: true).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
@click.option(
    "--progress/--no-progress",
    "show_progress",
    default=True,
    help="Draw a progress line on stderr (default: true).",
)
@click.pass_context
def cli(
    ctx: click.Context, json_logs: bool, verbose: bool, show_progress: bool
) -> None:
    """Resilient pagination and fetch engine CLI.

    Credentials and the base address come from CRAWL_* environment
    variables (or a .env file).
    """
    ctx.obj = SessionOptions(
        json_logs=json_logs, verbose=verbose, show_progress=show_progress
    )


@cli.command("find-last-page")
@click.argument("url_template")
@click.option(
    "--items",
    "item_selector",
    required=True,
    help="CSS selector matching the items of a listing page.",
)
@click.pass_obj
def find_last_page_command(
    options: SessionOptions, url_template: str, item_selector: str
) -> None:
    """Find the last non-empty page of URL_TEMPLATE.

    URL_TEMPLATE holds the page number as {} or {page}, for example
    "https://example.com/list?page={}".
    """

    def action(fetcher: ResilientFetcher, settings: AppSettings) -> None:
        source = HtmlPageSource(fetcher, url_template, item_selector)
        if options.show_progress:
            with ProgressSink("Probing pages", show_rate=False) as progress:
                finder = LastPageFinder(
                    progress=progress, cancel_event=fetcher.cancel_event
                )
                with fetcher.reporting_to(progress):
                    last_page = finder.find_last_page(source)
        else:
            finder = LastPageFinder(cancel_event=fetcher.cancel_event)
            last_page = finder.find_last_page(source)
        click.echo(str(last_page))

    _run_session(options, "find-last-page", action)


@cli.command()
@click.argument("url_template")
@click.option(
    "--items",
    "item_selector",
    required=True,
    help="CSS selector of item links (their href is printed).",
)
@click.option(
    "--next",
    "next_selector",
    default=None,
    help="CSS selector present while a next page exists.",
)
@click.option(
    "--last-page",
    "last_page_selector",
    default=None,
    help="CSS selector of the declared last page number.",
)
@click.option(
    "--probe",
    is_flag=True,
    help="Find the last page first, then walk pages 1..last.",
)
@click.option(
    "--fetch-items",
    is_flag=True,
    help=(
        "Fetch every item page, CRAWL_MAX_WORKERS at a time, and print "
        "href, status and size instead of the bare href."
    ),
)
@click.pass_obj
def walk(  # noqa: PLR0913
    options: SessionOptions,
    url_template: str,
    item_selector: str,
    next_selector: str | None,
    last_page_selector: str | None,
    probe: bool,
    fetch_items: bool,
) -> None:
    """Walk the pages of URL_TEMPLATE and print every item link.

    Either --next (walk while a next page exists) or --probe (discover the
    page count first) is required.
    """
    if next_selector is None and not probe:
        raise click.UsageError("Either --next or --probe is required.")

    title = "Pages" if options.show_progress else None

    def action(fetcher: ResilientFetcher, settings: AppSettings) -> None:
        hrefs: list[str] = []
        on_item = hrefs.append if fetch_items else click.echo
        walker = PageWalker(fetcher)

        if next_selector is not None:
            walker.walk_items(
                url_template,
                item_selector,
                next_selector,
                on_item,
                last_page_selector=last_page_selector,
                progress_title=title,
            )
        else:
            source = HtmlPageSource(fetcher, url_template, item_selector)
            last_page = LastPageFinder(
                cancel_event=fetcher.cancel_event
            ).find_last_page(source)

            def handle_items(document: BeautifulSoup) -> None:
                for href in select_hrefs(document, item_selector):
                    on_item(href)

            walker.walk_range(
                source.url_for, handle_items, last_page, progress_title=title
            )

        if fetch_items:
            lines = _fetch_items(
                fetcher,
                url_template,
                hrefs,
                settings.max_workers,
                options.show_progress,
            )
            for line in lines:
                click.echo(line)

    _run_session(options, "walk", action)


@cli.command("walk-links")
@click.argument("start_url")
@click.option(
    "--next",
    "next_selector",
    required=True,
    help="CSS selector of the link to the next page.",
)
@click.option(
    "--items",
    "item_selector",
    default=None,
    help="CSS selector of item links to print (default: print the page count).",
)
@click.pass_obj
def walk_links(
    options: SessionOptions,
    start_url: str,
    next_selector: str,
    item_selector: str | None,
) -> None:
    """Follow next-page links from START_URL, printing what each page holds."""
    title = "Pages" if options.show_progress else None

    def next_link(document: BeautifulSoup) -> str | None:
        links = select_hrefs(document, next_selector)
        return links[0] if links else None

    def on_page(document: BeautifulSoup) -> None:
        if item_selector is None:
            return
        for href in select_hrefs(document, item_selector):
            click.echo(href)

    def action(fetcher: ResilientFetcher, settings: AppSettings) -> None:
        pages = PageWalker(fetcher).walk_links(
            start_url, on_page, next_link, progress_title=title
        )
        if item_selector is None:
            click.echo(str(pages))

    _run_session(options, "walk-links", action)


if __name__ == "__main__":
    cli()
