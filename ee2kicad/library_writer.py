"""Writes encoded entities to KiCad library and board files.

Every file is written atomically: the text goes to a temporary file in the
destination directory, is flushed and fsynced, and then replaces the target
with os.replace().  A failed write leaves the previous file (or no file)
behind and raises WriteError.

Symbol libraries are merged at the S-expression level: the existing file
and the new entries are parsed with sexpdata and the merged library is
printed with one layout, so a re-merge never reflows existing entries.
"""

import contextlib
import logging
import os
import tempfile
import threading
import weakref
from pathlib import Path
from typing import Optional

import sexpdata
from sexpdata import Symbol

from .config import ConversionConfig
from .errors import ConversionWarning, WriteError
from .kicad_encoder import generator_clauses
from .utils import safe_name

log = logging.getLogger(__name__)

# Locks live as long as some writer holds them
_locks = weakref.WeakValueDictionary()
_locks_guard = threading.Lock()

_SYMBOL = Symbol("symbol")
_VERSION = Symbol("version")
_LIBRARY = Symbol("kicad_symbol_lib")

# Lists longer than this are broken onto one line per child list
_LINE_WIDTH = 100


def path_lock(path) -> threading.Lock:
    """The lock serializing writes to one output path."""
    key = os.path.abspath(str(path))
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _locks[key] = lock
        return lock


def atomic_write(path, text: str):
    """Replace ``path`` with ``text`` or leave it untouched."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    except OSError as e:
        raise WriteError(f"cannot create temporary file for {path}: {e}", path=str(path)) from e

    done = False
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
        done = True
    except OSError as e:
        raise WriteError(f"cannot write {path}: {e}", path=str(path)) from e
    finally:
        if not done:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
    log.debug("Wrote %s (%d bytes)", path, len(text))


# ── S-expressions ────────────────────────────────────────────────────


def parse_sexp(text: str, path: str = ""):
    """Parse one S-expression; any parser failure becomes a WriteError."""
    try:
        # Bare t and nil are KiCad tokens, not booleans
        return sexpdata.loads(text, true=None, nil=None)
    except Exception as e:
        raise WriteError(f"cannot parse S-expression: {e}", path=path) from e


def format_sexp(node, indent: str = "") -> str:
    """Print a parsed S-expression: short lists inline, long ones one child per line."""
    text = sexpdata.dumps(node)
    if not isinstance(node, list) or len(indent) + len(text) <= _LINE_WIDTH:
        return indent + text
    split = 0
    while split < len(node) and not isinstance(node[split], list):
        split += 1
    lines = [indent + "(" + " ".join(sexpdata.dumps(atom) for atom in node[:split])]
    lines.extend(format_sexp(child, indent + "  ") for child in node[split:])
    lines.append(indent + ")")
    return "\n".join(lines)


def _is_list(node, head: Symbol) -> bool:
    return isinstance(node, list) and len(node) > 0 and node[0] == head


def parse_symbol_library(text: str, path: str = ""):
    """Split an existing .kicad_sym into (version, {name: parsed symbol entry})."""
    tree = parse_sexp(text, path)
    if not _is_list(tree, _LIBRARY):
        raise WriteError("existing file is not a kicad_symbol_lib", path=path)
    version = None
    entries = {}
    for node in tree[1:]:
        if _is_list(node, _VERSION) and len(node) > 1:
            version = node[1]
        elif _is_list(node, _SYMBOL) and len(node) > 1:
            entries[str(node[1])] = node
    return version, entries


class LibraryWriter:
    """Writes symbol libraries, footprint libraries and boards below one directory."""

    def __init__(self, output_dir, config: ConversionConfig, warnings: Optional[list] = None):
        self.output_dir = Path(output_dir)
        self.config = config
        self.warnings = warnings if warnings is not None else []

    def warn(self, entity: str, kind: str, message: str):
        warning = ConversionWarning(entity=entity, kind=kind, message=message)
        self.warnings.append(warning)
        log.warning("%s", warning)

    def dedupe(self, entries) -> dict:
        """Collapse (name, text) pairs by name; the last one wins."""
        result = {}
        for name, text in entries:
            if name in result:
                self.warn(name, "DuplicateEntry",
                           f"duplicate name {name!r}; keeping the last definition")
            result[name] = text
        return result

    # ── Paths ────────────────────────────────────────────────────────

    @property
    def symbol_library_path(self) -> Path:
        return self.output_dir / f"{safe_name(self.config.library_name)}.kicad_sym"

    @property
    def footprint_library_dir(self) -> Path:
        return self.output_dir / f"{safe_name(self.config.library_name)}.pretty"

    def footprint_path(self, name: str) -> Path:
        return self.footprint_library_dir / f"{safe_name(name)}.kicad_mod"

    def board_path(self, name: str) -> Path:
        return self.output_dir / f"{safe_name(name)}.kicad_pcb"

    # ── Writers ──────────────────────────────────────────────────────

    def render_symbol_library(self, entries: dict) -> str:
        """Print parsed symbol entries as a library, sorted by name."""
        fv = self.config.format_version
        tree = [_LIBRARY, [_VERSION, fv.symbol_version]]
        tree.extend(parse_sexp(clause) for clause in generator_clauses(self.config))
        tree.extend(entries[name] for name in sorted(entries))
        return format_sexp(tree) + "\n"

    def write_symbols(self, entries) -> Path:
        """Write (name, text) symbol entries into the library, merging with what is there."""
        path = self.symbol_library_path
        new = {name: parse_sexp(text, str(path)) for name, text in self.dedupe(entries).items()}
        with path_lock(path):
            merged = {}
            if path.exists():
                try:
                    existing_text = path.read_text(encoding="utf-8")
                except OSError as e:
                    raise WriteError(f"cannot read existing library {path}: {e}",
                                     path=str(path)) from e
                version, existing = parse_symbol_library(existing_text, str(path))
                wanted = self.config.format_version.symbol_version
                if version != wanted:
                    raise WriteError(
                        f"existing library has format version {version}, "
                        f"refusing to mix in version {wanted}", path=str(path))
                merged.update(existing)
                for name in new:
                    if name in existing and not self.config.overwrite:
                        self.warn(name, "ExistingEntry",
                                   f"{name!r} already in {path.name}; kept (use --overwrite)")
                for name, node in new.items():
                    if name not in existing or self.config.overwrite:
                        merged[name] = node
            else:
                merged = new
            atomic_write(path, self.render_symbol_library(merged))
        log.info("Symbol library %s: %d entries", path, len(merged))
        return path

    def _write_single(self, path: Path, name: str, text: str) -> Optional[Path]:
        with path_lock(path):
            if path.exists() and not self.config.overwrite:
                self.warn(name, "ExistingFile", f"{path} exists; skipped (use --overwrite)")
                return None
            atomic_write(path, text)
        return path

    def write_footprint(self, name: str, text: str) -> Optional[Path]:
        return self._write_single(self.footprint_path(name), name, text)

    def write_board(self, name: str, text: str) -> Optional[Path]:
        return self._write_single(self.board_path(name), name, text)
