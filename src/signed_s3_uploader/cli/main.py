"""CLI interface for signed multipart uploads."""

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from ..core.exceptions import UploadCancelledError, UploaderError
from ..core.models import MB, load_settings
from ..core.notifications import UploadNotifier
from ..core.planner import plan_chunks
from ..core.uploader import SignedMultipartUploader

# Set up logging
logging.basicConfig(
    level=logging.WARNING,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()


class RichProgressNotifier(UploadNotifier):
    """Drives a rich progress bar from upload events."""

    def __init__(self, bar: Progress, task_id: TaskID, total: int) -> None:
        self.bar = bar
        self.task_id = task_id
        self.total = total

    def progress(self, loaded: int, total: int) -> None:
        self.bar.update(self.task_id, completed=loaded, total=total)

    def retry(self, attempt: int) -> None:
        self.bar.console.print(f"[yellow]Retrying (attempt {attempt})...[/yellow]")

    def complete(self, location: str) -> None:
        self.bar.update(self.task_id, completed=self.total)


def format_size(size: int) -> str:
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    elif size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """Signed S3 Uploader CLI - multipart uploads with backend-issued signatures."""
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--signing-backend",
    envvar="S3_UPLOAD_SIGNING_BACKEND",
    required=True,
    help="Signing backend base URL (or set S3_UPLOAD_SIGNING_BACKEND env var)",
)
@click.option(
    "--bucket", envvar="S3_UPLOAD_BUCKET", required=True, help="Bucket (or S3_UPLOAD_BUCKET)"
)
@click.option(
    "--access-key-id",
    envvar="S3_UPLOAD_ACCESS_KEY_ID",
    required=True,
    help="Public access key id (or S3_UPLOAD_ACCESS_KEY_ID)",
)
@click.option("--host", envvar="S3_UPLOAD_HOST", help="Storage host (default: bucket S3 URL)")
@click.option("--key", help="Object key (default: /<bucket>/<epochMillis>_<filename>)")
@click.option("--content-type", help="Content type (default: guessed from the filename)")
@click.option(
    "--chunk-size",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Chunk size in MB",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=5,
    show_default=True,
    help="Retries per request",
)
@click.option("--acl", default="public-read", show_default=True, help="x-amz-acl value")
@click.option("--encrypted", is_flag=True, help="Request AES256 server-side encryption")
@click.pass_context
def upload(
    ctx,
    local_path,
    signing_backend,
    bucket,
    access_key_id,
    host,
    key,
    content_type,
    chunk_size,
    max_retries,
    acl,
    encrypted,
):
    """Upload a file using signed multipart requests."""
    try:
        settings = load_settings(
            signing_backend_url=signing_backend,
            bucket=bucket,
            access_key_id=access_key_id,
            host=host,
            key=key,
            content_type=content_type,
            chunk_size=chunk_size * MB,
            max_retries=max_retries,
            acl=acl,
            encrypted=encrypted,
            log=ctx.obj["verbose"],
        )

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            console=console,
        ) as progress:
            file_size = Path(local_path).stat().st_size
            task_id = progress.add_task(f"Uploading {Path(local_path).name}", total=file_size)
            notifier = RichProgressNotifier(progress, task_id, file_size)
            with SignedMultipartUploader(local_path, settings, notifier=notifier) as uploader:
                try:
                    location = uploader.upload()
                except KeyboardInterrupt:
                    uploader.cancel_upload()
                    raise UploadCancelledError()

        console.print(f"[green]✓[/green] Upload completed: [cyan]{location}[/cyan]")

    except UploadCancelledError:
        console.print("[yellow]Upload cancelled.[/yellow]")
        sys.exit(130)
    except UploaderError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.argument("local_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--chunk-size",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Chunk size in MB",
)
def plan(local_path, chunk_size):
    """Show how a file would be split into parts."""
    file_size = Path(local_path).stat().st_size
    chunks = plan_chunks(file_size, chunk_size * MB)

    table = Table(title=f"{Path(local_path).name} ({format_size(file_size)})")
    table.add_column("Part", justify="right", style="cyan")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Size", justify="right", style="green")

    for chunk in chunks:
        table.add_row(
            str(chunk.part_number), str(chunk.start), str(chunk.end), format_size(chunk.size)
        )

    console.print(table)
    console.print(f"{len(chunks)} parts")


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
