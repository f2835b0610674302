"""CLI entrypoint for batch annotation.

Usage:
    python -m aves.batch <image_or_dir ...> [--config config.yaml]
                         [--concurrency 5] [--species "Mallard"]
                         [--patterns patterns.json] [--json]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from aves.batch.manager import JobManager
from aves.config import AvesConfig, VisionConfig
from aves.errors import InvalidInput
from aves.learning.patterns import PatternLearner
from aves.store.snapshot import load_patterns
from aves.types import BatchItem, ItemStatus, JobProgress, JobStatus
from aves.vision.base import VisionProvider

console = Console()

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}

_STATUS_STYLE = {
    ItemStatus.succeeded: "green",
    ItemStatus.failed: "red",
    ItemStatus.processing: "cyan",
    ItemStatus.pending: "dim",
}


def collect_images(paths: list[Path]) -> list[Path]:
    """Expand directories into their image files; keep explicit files as given."""
    images: list[Path] = []
    for path in paths:
        if path.is_dir():
            images.extend(
                sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_EXTENSIONS)
            )
        elif path.is_file():
            images.append(path)
    return images


def _create_provider(config: VisionConfig) -> VisionProvider:
    """Instantiate the configured vision provider."""
    if config.provider == "gemini":
        from aves.vision.providers.gemini import GeminiVisionProvider

        return GeminiVisionProvider(
            model=config.model,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
            request_timeout_seconds=config.request_timeout_seconds,
            api_key_env_var=config.api_key_env_var,
            project=config.project,
            location=config.location,
        )
    raise ValueError(f"Unknown vision provider: {config.provider}")


def _build_summary_panel(progress: JobProgress) -> Panel:
    color = {
        JobStatus.completed: "green",
        JobStatus.cancelled: "yellow",
        JobStatus.failed: "red",
    }.get(progress.status, "blue")
    lines = [
        f"[bold]Job:[/bold] {progress.job_id}",
        f"[bold]Status:[/bold] [{color}]{progress.status.value}[/{color}]",
        f"[bold]Processed:[/bold] {progress.processed}/{progress.total} ({progress.percentage}%)",
        f"  Succeeded: {progress.successful}",
        f"  Failed: {progress.failed}",
    ]
    return Panel("\n".join(lines), title="Batch Summary", border_style=color)


def _build_item_table(items: list[BatchItem]) -> Table:
    table = Table(title="Items", show_lines=True)
    table.add_column("Image", style="cyan")
    table.add_column("Status", width=10)
    table.add_column("Attempts", justify="right", width=8)
    table.add_column("Candidates", justify="right", width=10)
    table.add_column("Adjusted", justify="right", width=8)
    table.add_column("Error")

    for item in items:
        style = _STATUS_STYLE.get(item.status, "white")
        table.add_row(
            Path(item.image_ref).name,
            f"[{style}]{item.status.value}[/{style}]",
            str(item.attempts),
            str(len(item.candidates)),
            str(sum(1 for c in item.candidates if c.adjusted)),
            item.last_error or "",
        )
    return table


def _results_to_dict(progress: JobProgress, items: list[BatchItem]) -> dict:
    """Convert results to a JSON-serializable dict."""
    return {
        "job_id": progress.job_id,
        "status": progress.status.value,
        "total": progress.total,
        "processed": progress.processed,
        "successful": progress.successful,
        "failed": progress.failed,
        "items": [
            {
                "id": item.id,
                "image": item.image_ref,
                "status": item.status.value,
                "attempts": item.attempts,
                "error": item.last_error,
                "candidates": [c.to_dict() for c in item.candidates],
            }
            for item in items
        ],
    }


def _wait_with_progress(manager: JobManager, job_id: str, total: int) -> None:
    with Progress(
        TextColumn("[bold]Annotating"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
        transient=True,
    ) as bar:
        task = bar.add_task("annotate", total=total)
        while True:
            job = manager.wait_for_job(job_id, timeout=0.5)
            bar.update(task, completed=job.processed_items)
            if job.is_terminal:
                return


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Annotate bird images with a vision model in a concurrent batch.",
        prog="python -m aves.batch",
    )
    parser.add_argument("images", type=Path, nargs="+", help="Image files or directories")
    parser.add_argument("--config", type=Path, default=None, help="Aves config YAML")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel workers for this job")
    parser.add_argument("--species", default=None, help="Species shown in every image")
    parser.add_argument(
        "--patterns", type=Path, default=None,
        help="Learned pattern snapshot (JSON) used to adjust candidate boxes",
    )
    parser.add_argument("--json", action="store_true", help="Output JSON summary")
    args = parser.parse_args(argv)

    if not args.json:
        logging.basicConfig(
            level=logging.INFO,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_time=True, show_path=False)],
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    images = collect_images(args.images)
    if not images:
        console.print("[red]Error: no images found[/red]")
        return 1

    config = AvesConfig.from_yaml(args.config) if args.config else AvesConfig.default()

    learner = PatternLearner(config=config.learning)
    if args.patterns is not None:
        if not args.patterns.is_file():
            console.print(f"[red]Error: {args.patterns} not found[/red]")
            return 1
        try:
            count = load_patterns(args.patterns, learner.store)
        except (ValueError, OSError) as exc:
            console.print(f"[red]Error: could not load {args.patterns}: {exc}[/red]")
            return 1
        if not args.json:
            console.print(f"[bold]Loaded {count} learned patterns[/bold]")

    try:
        provider = _create_provider(config.vision)
    except (ValueError, ImportError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return 1

    manager = JobManager(provider, config=config, learner=learner)
    try:
        job_id = manager.start_batch(
            [str(p) for p in images], concurrency=args.concurrency, species=args.species,
        )
    except InvalidInput as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return 1

    try:
        if args.json:
            manager.wait_for_job(job_id)
        else:
            _wait_with_progress(manager, job_id, len(images))
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling; waiting for running items to finish...[/yellow]")
        manager.cancel_job(job_id)
        manager.wait_for_job(job_id)

    progress = manager.get_job_progress(job_id)
    items = manager.get_items(job_id)

    if args.json:
        print(json.dumps(_results_to_dict(progress, items), indent=2, default=str))
    else:
        console.print()
        console.print(_build_item_table(items))
        console.print()
        console.print(_build_summary_panel(progress))

    ok = progress.status == JobStatus.completed and not progress.has_failures
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
