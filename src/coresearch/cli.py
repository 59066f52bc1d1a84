from __future__ import annotations

import json
import logging

import typer
import yaml
from dotenv import load_dotenv

from .config import Settings
from .search import SearchReport, run_search


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _emit(payload: dict, fmt: str) -> None:
    if fmt == "yaml":
        typer.echo(yaml.safe_dump(payload, sort_keys=False, allow_unicode=True))
    else:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _report_error(report: SearchReport) -> None:
    if report.error is None:
        return
    kept = ""
    if report.results:
        kept = f"; showing {len(report.results)} results retrieved before the failure"
    typer.secho(
        f"search failed ({report.error.kind}): {report.error}{kept}", fg=typer.colors.RED, err=True
    )


def _require_api_key(settings: Settings) -> None:
    if not settings.core_api_key:
        typer.secho(
            "CORE_API_KEY is required; set it in the environment or .env", fg=typer.colors.RED, err=True
        )
        raise typer.Exit(code=2)


def _parse_max_pages(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not a page count: {value!r}")
    pages = int(value)
    if pages < 1:
        raise ValueError(f"max_pages must be at least 1, got {pages}")
    return pages


app = typer.Typer(add_completion=False)


@app.command("search")
def cmd_search(
    query: str = typer.Argument(..., help="Search query"),
    max_pages: int | None = typer.Option(None, "--max-pages", min=1, help="Override MAX_PAGES"),
    fmt: str = typer.Option("json", "--format", help="Output format: json|yaml"),
    raw: bool = typer.Option(False, "--raw", help="Print raw records instead of display records"),
    log_level: str = typer.Option("WARNING", "--log-level"),
):
    """Fetch every page of results for QUERY and print them."""
    load_dotenv()
    _setup_logging(log_level)
    settings = Settings.from_env()
    _require_api_key(settings)

    report, fetched = run_search(query, settings, max_pages=max_pages)
    payload = report.to_dict()
    if raw:
        payload["results"] = [
            {
                "title": r.title,
                "abstract": r.abstract,
                "links": [{"type": link.type, "url": link.url} for link in r.links],
            }
            for r in fetched.records
        ]
    _emit(payload, fmt)
    _report_error(report)
    if report.error is not None:
        raise typer.Exit(code=1)


@app.command("sweep-file")
def cmd_sweep_file(
    file: str = typer.Argument("sweeps.yaml"),
    fmt: str = typer.Option("json", "--format", help="Output format: json|yaml"),
    log_level: str = typer.Option("WARNING", "--log-level"),
):
    """Run a series of searches defined in a YAML file, one after another.

    YAML structure:
      - query: "large language models"
        max_pages: 3
    """
    load_dotenv()
    _setup_logging(log_level)
    settings = Settings.from_env()
    _require_api_key(settings)
    try:
        with open(file, encoding="utf-8") as f:
            items = yaml.safe_load(f) or []
    except (OSError, yaml.YAMLError) as exc:
        typer.secho(f"failed to read sweeps file: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from None
    if not isinstance(items, list):
        typer.secho("sweeps file must be a list", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    failures = 0
    for idx, item in enumerate(items, start=1):
        q = item.get("query") if isinstance(item, dict) else None
        if not q:
            typer.secho(f"skipping item {idx}: missing query", fg=typer.colors.YELLOW, err=True)
            continue
        try:
            max_pages = _parse_max_pages(item.get("max_pages"))
        except (TypeError, ValueError) as exc:
            typer.secho(f"skipping item {idx}: invalid max_pages ({exc})", fg=typer.colors.YELLOW, err=True)
            continue
        typer.echo(f"[sweep {idx}] query=\"{q}\" max_pages={max_pages or settings.max_pages}", err=True)
        report, _ = run_search(str(q), settings, max_pages=max_pages)
        _emit(report.to_dict(), fmt)
        if report.error is not None:
            failures += 1
            _report_error(report)
    if failures:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
