"""Re-run the photo optimizer over existing ``cafe_photos`` rows.

Usage::

    python -m cafe_directory.jobs.backfill_photos [--limit N] [--kind cafe|menu]
                                                  [--cafe-id UUID] [--dry-run]

Each row is optimized with its own deadline, then updated in a short
transaction. When that update fails the freshly written object is deleted.
"""
import argparse
import logging
import sys
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from cafe_directory.config import settings
from cafe_directory.database import SessionLocal
from cafe_directory.logging_config import configure_logging
from cafe_directory.media import normalize_photo_kind
from cafe_directory.services import catalog_repository as catalog
from cafe_directory.services.format_encoder import build_format_encoder
from cafe_directory.services.photo_optimizer import PhotoOptimizer
from cafe_directory.storage import build_object_store

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 25


@dataclass
class BackfillStats:
    processed: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    variants: int = 0
    bytes_before: int = 0
    bytes_after: int = 0

    @property
    def bytes_saved(self) -> int:
        return self.bytes_before - self.bytes_after


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Optimize stored cafe photos and generate variants.")
    parser.add_argument("--limit", type=int, default=0, help="max rows to process (0 = all)")
    parser.add_argument("--kind", default="", help="cafe or menu (default: both)")
    parser.add_argument("--cafe-id", default="", help="only photos of this cafe")
    parser.add_argument("--dry-run", action="store_true", help="report what would change without writing")
    return parser


def run_backfill(
    db: Session,
    optimizer: PhotoOptimizer,
    kind: Optional[str] = None,
    cafe_id: Optional[str] = None,
    limit: Optional[int] = None,
    dry_run: bool = False,
    timeout_seconds: float = 40,
) -> BackfillStats:
    stats = BackfillStats()
    rows = [
        (p.id, p.cafe_id, p.kind.value, p.object_key, p.mime_type, p.size_bytes)
        for p in catalog.list_photos_for_backfill(db, kind=kind, cafe_id=cafe_id, limit=limit)
    ]
    db.rollback()
    logger.info("backfill: %d photo(s) selected (dry_run=%s)", len(rows), dry_run)

    for photo_id, row_cafe_id, row_kind, object_key, mime_type, size_bytes in rows:
        stats.processed += 1
        deadline = time.monotonic() + timeout_seconds
        run = optimizer.preview if dry_run else optimizer.optimize_and_persist
        try:
            result = run(row_cafe_id, row_kind, object_key, mime_type, size_bytes, deadline=deadline)
        except Exception as exc:
            stats.failed += 1
            logger.warning("backfill: photo %s (%s) failed: %s", photo_id, object_key, exc)
            continue

        stats.variants += result.generated_variants
        changed = (
            result.object_key != object_key
            or result.mime_type != mime_type
            or result.size_bytes != size_bytes
        )
        if not changed:
            stats.unchanged += 1
        elif dry_run:
            stats.updated += 1
            stats.bytes_before += size_bytes
            stats.bytes_after += result.size_bytes
        else:
            try:
                catalog.update_photo_object(db, photo_id, result.object_key, result.mime_type, result.size_bytes)
                db.commit()
            except Exception as exc:
                db.rollback()
                stats.failed += 1
                logger.warning("backfill: update of photo %s failed: %s", photo_id, exc)
                if result.object_key != object_key:
                    optimizer.delete_quietly(result.object_key)
                continue
            stats.updated += 1
            stats.bytes_before += size_bytes
            stats.bytes_after += result.size_bytes

        if stats.processed % PROGRESS_EVERY == 0:
            logger.info(
                "backfill: %d/%d processed, %d updated, %d failed",
                stats.processed, len(rows), stats.updated, stats.failed,
            )

    logger.info(
        "backfill done: processed=%d updated=%d unchanged=%d failed=%d variants=%d bytes_saved=%d",
        stats.processed, stats.updated, stats.unchanged, stats.failed, stats.variants, stats.bytes_saved,
    )
    return stats


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(settings.LOG_LEVEL)

    kind = None
    if args.kind.strip():
        kind = normalize_photo_kind(args.kind)
        if not kind:
            logger.error("--kind must be cafe or menu")
            return 2

    store = build_object_store(settings)
    if store is None:
        logger.error("photo storage is disabled (set S3_ENABLED=true)")
        return 1
    optimizer = PhotoOptimizer(
        store,
        build_format_encoder(settings),
        max_upload_bytes=settings.S3_MAX_UPLOAD_BYTES,
        encoder_formats=settings.encoder_formats(),
    )

    db = SessionLocal()
    try:
        stats = run_backfill(
            db,
            optimizer,
            kind=kind,
            cafe_id=args.cafe_id.strip() or None,
            limit=args.limit if args.limit > 0 else None,
            dry_run=args.dry_run,
            timeout_seconds=settings.OPTIMIZE_TIMEOUT_SECONDS,
        )
    finally:
        db.close()
    return 1 if stats.failed else 0


if __name__ == "__main__":
    sys.exit(main())
