"""Batch conversion: decode, assemble, normalize, encode, write.

Each entity is converted as an independent task on a thread pool; nothing
mutable is shared between tasks.  Output files are written afterwards, one
writer per file.  A batch can be cancelled through a threading.Event, which
is checked before each entity starts and before each file is written.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .assembler import assemble
from .cad_model import EntityKind
from .config import ConversionConfig
from .errors import ConversionError, WriteError
from .importer import EntityRecord
from .kicad_encoder import encode
from .library_writer import LibraryWriter
from .transform import normalize

log = logging.getLogger(__name__)


@dataclass
class EntityResult:
    """Outcome of converting one record."""
    name: str
    kind: EntityKind
    source: str = ""
    text: str = ""
    entity: object = None
    warnings: list = field(default_factory=list)
    error: Optional[ConversionError] = None
    cancelled: bool = False
    output: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


@dataclass
class BatchResult:
    results: list = field(default_factory=list)  # list of EntityResult, input order
    written: list = field(default_factory=list)  # list of Path
    write_errors: list = field(default_factory=list)  # list of WriteError
    warnings: list = field(default_factory=list)  # writer warnings
    cancelled: bool = False

    @property
    def converted(self) -> list:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list:
        return [r for r in self.results if not r.ok]

    def all_warnings(self) -> list:
        found = []
        for r in self.results:
            found.extend(r.warnings)
        return found + self.warnings


def convert_record(record: EntityRecord, config: ConversionConfig) -> EntityResult:
    """Convert one record to KiCad text; errors are captured on the result."""
    result = EntityResult(name=record.name, kind=record.kind, source=record.source)
    try:
        entity = assemble(record, result.warnings)
        normalize(entity, config)
        result.text = encode(entity, config, result.warnings)
        result.entity = entity
    except ConversionError as e:
        e.with_context(record.name)
        result.error = e
        log.error("Failed to convert %s %s: %s", record.kind.value, record.name, e)
    except Exception as e:
        result.error = ConversionError(f"unexpected error: {e}", entity=record.name)
        log.exception("Unexpected error converting %s %s", record.kind.value, record.name)
    return result


def _run(record: EntityRecord, config: ConversionConfig, cancel: threading.Event) -> EntityResult:
    if cancel.is_set():
        return EntityResult(name=record.name, kind=record.kind, source=record.source,
                            cancelled=True)
    return convert_record(record, config)


def convert_records(records: list, config: ConversionConfig,
                    cancel: Optional[threading.Event] = None) -> list:
    """Convert records concurrently; results come back in input order."""
    if cancel is None:
        cancel = threading.Event()
    results = [None] * len(records)
    with ThreadPoolExecutor(max_workers=max(1, config.workers)) as pool:
        futures = {pool.submit(_run, record, config, cancel): i
                   for i, record in enumerate(records)}
        try:
            for future in as_completed(futures):
                result = future.result()
                results[futures[future]] = result
                if result.ok:
                    log.debug("Converted %s %s (%d warnings)",
                              result.kind.value, result.name, len(result.warnings))
        except KeyboardInterrupt:
            # Queued tasks see the flag and return without converting
            cancel.set()
            raise
    return results


def write_results(results: list, writer: LibraryWriter, batch: BatchResult,
                  cancel: threading.Event):
    """Write converted entities: one symbol library, one file per footprint and board."""
    ok = [r for r in results if r.ok]
    symbols = [r for r in ok if r.kind == EntityKind.SYMBOL]

    jobs = []
    if symbols:
        def write_symbols():
            path = writer.write_symbols([(r.name, r.text) for r in symbols])
            for r in symbols:
                r.output = path
            return path
        jobs.append(("symbol library", symbols, write_symbols))

    by_name = {}
    for r in ok:
        if r.kind != EntityKind.SYMBOL:
            key = (r.kind, r.name)
            if key in by_name:
                writer.warn(r.name, "DuplicateEntry",
                            f"duplicate {r.kind.value} {r.name!r}; keeping the last definition")
            by_name[key] = r
    for (kind, name), r in sorted(by_name.items(), key=lambda item: (item[0][0].value, item[0][1])):
        write = writer.write_board if kind == EntityKind.BOARD else writer.write_footprint

        def write_one(r=r, write=write):
            r.output = write(r.name, r.text)
            return r.output
        jobs.append((f"{kind.value} {name}", [r], write_one))

    for label, owners, job in jobs:
        if cancel.is_set():
            batch.cancelled = True
            log.warning("Cancelled before writing %s", label)
            return
        try:
            path = job()
        except WriteError as e:
            e.with_context(owners[0].name if len(owners) == 1 else "")
            batch.write_errors.append(e)
            log.error("%s", e)
            continue
        if path is not None:
            batch.written.append(path)


def convert_batch(records: list, config: ConversionConfig, output_dir,
                  cancel: Optional[threading.Event] = None) -> BatchResult:
    """Convert and write a batch of records.

    A cancelled batch writes nothing it had not already written and reports
    the entities it never started.
    """
    if cancel is None:
        cancel = threading.Event()
    batch = BatchResult()
    batch.results = convert_records(records, config, cancel)
    if cancel.is_set():
        batch.cancelled = True
        log.warning("Batch cancelled; %d of %d entities not converted, nothing written",
                    sum(1 for r in batch.results if r.cancelled), len(records))
        return batch

    writer = LibraryWriter(output_dir, config, batch.warnings)
    write_results(batch.results, writer, batch, cancel)
    log.info("Converted %d of %d entities, wrote %d files",
             len(batch.converted), len(batch.results), len(batch.written))
    return batch
