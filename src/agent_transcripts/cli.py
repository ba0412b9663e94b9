"""CLI for converting agent transcripts to the unified format."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click

from .config import Config, ConvertOptions
from .convert import SOURCES, convert_file
from .pricing import load_pricing_file
from .schemas import dump_transcript


def _parse_now(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}", param_hint="--now")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def write_blobs(blobs: dict, blobs_dir: Path) -> int:
    """Write each blob as ``<blobs_dir>/<sha256>``; return how many were new."""
    blobs_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    for sha256, blob in blobs.items():
        target = blobs_dir / sha256
        if target.exists():
            continue
        target.write_bytes(blob.data)
        written += 1
    return written


@click.group()
@click.version_option(package_name="agent-transcripts")
@click.option(
    "--config",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log conversion details")
@click.pass_context
def main(ctx, config: Optional[Path], verbose: bool):
    """Convert Claude Code, Codex and Cline transcripts to one format."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["config"] = Config.load(config)


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--source",
    type=click.Choice(SOURCES),
    default=None,
    help="Transcript format (detected from each file by default)",
)
@click.option(
    "--pricing",
    "pricing_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="LiteLLM pricing JSON (overrides config)",
)
@click.option("--now", default=None, help="Timestamp to use when a transcript has none (ISO-8601)")
@click.option("--client-version", default=None, help="Override the recorded client version")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write JSON here instead of stdout",
)
@click.option(
    "--blobs-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for extracted images (overrides config)",
)
@click.pass_context
def convert(
    ctx,
    paths: tuple[Path, ...],
    source: Optional[str],
    pricing_file: Optional[Path],
    now: Optional[str],
    client_version: Optional[str],
    output: Optional[Path],
    blobs_dir: Optional[Path],
):
    """Convert transcript files to unified JSON."""
    cfg: Config = ctx.obj["config"]
    pricing_file = pricing_file or cfg.pricing_file
    blobs_dir = blobs_dir or cfg.blobs_dir

    pricing = None
    if pricing_file:
        try:
            pricing = load_pricing_file(pricing_file)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"Could not load pricing file {pricing_file}: {e}")

    options = ConvertOptions(
        pricing=pricing,
        now=_parse_now(now),
        client_version=client_version,
    )

    documents = []
    for path in paths:
        result = convert_file(path, options, source)
        if result is None:
            click.echo(f"{path.name}: no transcript, skipping", err=True)
            continue
        documents.append(dump_transcript(result.transcript))
        if blobs_dir and result.blobs:
            written = write_blobs(result.blobs, blobs_dir)
            click.echo(f"{path.name}: {written} new blobs in {blobs_dir}", err=True)

    if not documents:
        raise click.ClickException("No transcripts converted")

    payload = documents[0] if len(paths) == 1 else documents
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text + "\n", encoding="utf-8")
        click.echo(f"Wrote {len(documents)} transcript(s) to {output}", err=True)
    else:
        click.echo(text)


@main.command()
@click.option(
    "--pricing-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Set default LiteLLM pricing file",
)
@click.option(
    "--blobs-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Set default blobs directory",
)
@click.option(
    "--show",
    is_flag=True,
    help="Show current configuration",
)
@click.pass_context
def config(ctx, pricing_file: Optional[Path], blobs_dir: Optional[Path], show: bool):
    """Configure conversion defaults."""
    cfg: Config = ctx.obj["config"]

    if show or (not pricing_file and not blobs_dir):
        click.echo("Current configuration:")
        click.echo(f"  Pricing file: {cfg.pricing_file}")
        click.echo(f"  Blobs dir:    {cfg.blobs_dir}")
        return

    if pricing_file:
        cfg.pricing_file = pricing_file
    if blobs_dir:
        cfg.blobs_dir = blobs_dir

    cfg.save(ctx.obj["config_path"])
    click.echo("Configuration saved.")
    click.echo(f"  Pricing file: {cfg.pricing_file}")
    click.echo(f"  Blobs dir:    {cfg.blobs_dir}")


if __name__ == "__main__":
    main()
