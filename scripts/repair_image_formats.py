#!/usr/bin/env python3
"""
Repair image records whose extension or content type does not match their bytes.

Older uploads trusted provider-reported formats, so a file named .webp could
hold PNG bytes. For each artifact this reads the stored object, detects the
real format from its magic bytes and, when it differs, re-stores the object
under the right extension, updates the record and removes the old object.

Run with: python scripts/repair_image_formats.py --dry-run
"""
import asyncio
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from app.config import settings
from app.models import Artifact
from app.providers.formats import detect_format, MIME_EXTENSIONS
from app.services.artifact_service import ArtifactService
from app.services.storage import ByteStorage, LocalByteStorage

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="repair-image-formats",
    help="Fix image records whose extension or content type disagrees with their bytes",
    no_args_is_help=False,
)

console = Console()
err_console = Console(stderr=True)


@dataclass
class FormatFix:
    artifact_id: str
    old_path: str
    new_path: str
    old_mime_type: str
    new_mime_type: str
    applied: bool = False


@dataclass
class RepairReport:
    scanned: int = 0
    missing: int = 0
    unknown: int = 0
    fixes: list = field(default_factory=list)


def _current_extension(file_name: str) -> str:
    ext = posixpath.splitext(file_name)[1].lstrip(".").lower()
    return MIME_EXTENSIONS.get(f"image/{ext}", ext)


def plan_fix(artifact: Artifact, data: bytes) -> Optional[FormatFix]:
    """Return the fix an artifact needs, or None if its labels match its bytes."""
    detected = detect_format(data)
    if detected is None:
        return None

    if _current_extension(artifact.file_name) == detected.extension and artifact.mime_type == detected.mime_type:
        return None

    stem = posixpath.splitext(artifact.file_name)[0]
    new_file_name = f"{stem}.{detected.extension}"
    return FormatFix(
        artifact_id=artifact.id,
        old_path=artifact.storage_path,
        new_path=posixpath.join(posixpath.dirname(artifact.storage_path), new_file_name),
        old_mime_type=artifact.mime_type,
        new_mime_type=detected.mime_type,
    )


async def repair_formats(
    session_factory,
    storage: ByteStorage,
    dry_run: bool = True,
    user_id: Optional[str] = None,
) -> RepairReport:
    """Scan artifacts and fix mislabelled ones. Nothing is written when dry_run is set."""
    report = RepairReport()

    async with session_factory() as session:
        service = ArtifactService(session)
        artifacts = await service.get_all_for_user(user_id, limit=100_000) if user_id else await service.get_all()

        for artifact in artifacts:
            report.scanned += 1
            data = await storage.get(artifact.storage_path)
            if data is None:
                report.missing += 1
                logger.warning("Stored object missing", extra={"artifact_id": artifact.id, "path": artifact.storage_path})
                continue

            if detect_format(data) is None:
                report.unknown += 1
                continue

            fix = plan_fix(artifact, data)
            if fix is None:
                continue
            report.fixes.append(fix)

            if dry_run:
                continue

            public_url = await storage.put(fix.new_path, data, fix.new_mime_type)
            await service.update_location(
                artifact,
                storage_path=fix.new_path,
                file_name=posixpath.basename(fix.new_path),
                public_url=public_url,
                mime_type=fix.new_mime_type,
            )
            if fix.new_path != fix.old_path:
                await storage.delete(fix.old_path)
            fix.applied = True

    return report


def _print_report(report: RepairReport, dry_run: bool) -> None:
    if report.fixes:
        table = Table(title="Dry run: planned fixes" if dry_run else "Applied fixes")
        table.add_column("Artifact", style="cyan")
        table.add_column("Old path")
        table.add_column("New path", style="green")
        table.add_column("Content type")
        for fix in report.fixes:
            table.add_row(
                fix.artifact_id,
                fix.old_path,
                fix.new_path,
                f"{fix.old_mime_type} -> {fix.new_mime_type}",
            )
        console.print(table)

    console.print(
        f"Scanned [bold]{report.scanned}[/bold] images: "
        f"[green]{len(report.fixes)}[/green] mislabelled, "
        f"[yellow]{report.missing}[/yellow] missing, "
        f"[yellow]{report.unknown}[/yellow] unrecognised"
    )
    if dry_run and report.fixes:
        console.print("[dim]Re-run without --dry-run to apply.[/dim]")


@app.command()
def repair(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without writing"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only repair this user's images"),
    storage_dir: str = typer.Option(settings.STORAGE_DIR, "--storage-dir", help="Image storage root"),
):
    """Detect true image formats and fix mislabelled records."""
    from app.database import async_session

    storage = LocalByteStorage(storage_dir, settings.PUBLIC_MEDIA_URL)
    try:
        report = asyncio.run(repair_formats(async_session, storage, dry_run=dry_run, user_id=user))
    except Exception as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _print_report(report, dry_run)


if __name__ == "__main__":
    app()
