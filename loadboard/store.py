# loadboard/store.py
"""Append-only CSV store with fingerprint based duplicate suppression.

Rows are only ever appended. When the file grows past ``max_bytes`` it is
renamed to ``<stem>_archived_<timestamp><suffix>`` and a fresh file with the
same header takes its place; from then on only the fresh file seeds the set
of seen fingerprints.
"""
import csv
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional
from pydantic import ValidationError
from .schemas import RECORD_FIELDS, AppendResult, ListingRecord
from .utils import logger


class StoreError(Exception):
    pass


def read_records(path) -> List[ListingRecord]:
    path = Path(path)
    if not path.exists():
        return []
    records = []
    with open(path, "r", newline="", encoding="utf-8") as fh:
        for lineno, row in enumerate(csv.DictReader(fh), start=2):
            try:
                records.append(ListingRecord.model_validate(row))
            except ValidationError as e:
                logger.warning("Skipping malformed row %d in %s: %s", lineno, path.name, e.errors()[0]["msg"])
    return records


class ListingStore:
    def __init__(self, path, max_bytes: Optional[int] = None):
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._seen = set()
        self._loaded = False

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.output_path, max_bytes=settings.max_file_bytes)

    def load(self) -> List[ListingRecord]:
        records = read_records(self.path)
        self._seen = {r.fingerprint for r in records}
        self._loaded = True
        logger.info("Loaded %d existing records from %s", len(records), self.path)
        return records

    def seen(self, record: ListingRecord) -> bool:
        return record.fingerprint in self._seen

    def append(self, records: Iterable[ListingRecord]) -> AppendResult:
        if not self._loaded:
            self.load()
        try:
            rotated_to = self._rotate_if_needed()
        except OSError as e:
            raise StoreError(f"could not rotate {self.path}: {e}") from e

        fresh, duplicates = [], 0
        for record in records:
            fp = record.fingerprint
            if fp in self._seen:
                duplicates += 1
                continue
            self._seen.add(fp)
            fresh.append(record)

        if fresh:
            try:
                self._write(fresh)
            except OSError as e:
                for record in fresh:
                    self._seen.discard(record.fingerprint)
                raise StoreError(f"could not append to {self.path}: {e}") from e

        logger.info("Saved %d new records, skipped %d duplicates (%s)", len(fresh), duplicates, self.path)
        return AppendResult(written=len(fresh), duplicates=duplicates, rotated_to=rotated_to)

    def _write(self, records):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        new_file = not self.path.exists() or self.path.stat().st_size == 0
        with open(self.path, "a", newline="", encoding="utf-8") as fh:
            writer = csv.DictWriter(fh, fieldnames=RECORD_FIELDS)
            if new_file:
                writer.writeheader()
            for record in records:
                writer.writerow(record.to_row())

    def _start_file(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", newline="", encoding="utf-8") as fh:
            csv.DictWriter(fh, fieldnames=RECORD_FIELDS).writeheader()

    def _archive_path(self) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        candidate = self.path.with_name(f"{self.path.stem}_archived_{stamp}{self.path.suffix}")
        n = 1
        while candidate.exists():
            candidate = self.path.with_name(f"{self.path.stem}_archived_{stamp}_{n}{self.path.suffix}")
            n += 1
        return candidate

    def _rotate_if_needed(self) -> Optional[Path]:
        if not self.max_bytes or not self.path.exists():
            return None
        size = self.path.stat().st_size
        if size <= self.max_bytes:
            return None
        archive = self._archive_path()
        os.replace(self.path, archive)
        self._start_file()
        self._seen = set()
        logger.info("Rotated %s (%d bytes) to %s", self.path.name, size, archive.name)
        return archive

    def archives(self) -> List[Path]:
        return sorted(self.path.parent.glob(f"{self.path.stem}_archived_*{self.path.suffix}"))

    def prune_archives(self, max_age_days, now=None) -> List[Path]:
        cutoff = (now if now is not None else time.time()) - max_age_days * 24 * 60 * 60
        removed = []
        for archive in self.archives():
            try:
                if archive.stat().st_mtime < cutoff:
                    archive.unlink()
                    removed.append(archive)
                    logger.info("Deleted old archive %s", archive.name)
            except OSError as e:
                logger.warning("Could not prune %s: %s", archive.name, e)
        return removed
