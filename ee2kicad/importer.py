"""Input record loading.

Splits an EasyEDA JSON document into one EntityRecord per symbol, footprint
or board it contains.  Three shapes of input are accepted:

  * a component API result: ``{"dataStr": {...}, "packageDetail": {...},
    "lcsc": {...}}`` (optionally wrapped in ``{"result": ...}``), which
    yields a symbol and its footprint;
  * a bare document ``{"head": {"docType": ...}, "canvas": ..., "shape": [...]}``
    with docType 2 (symbol), 4 (footprint) or 3 (board);
  * a JSON list of either.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .cad_model import EntityKind
from .errors import InputError

log = logging.getLogger(__name__)

_DOC_TYPES = {
    "2": EntityKind.SYMBOL,
    "3": EntityKind.BOARD,
    "4": EntityKind.FOOTPRINT,
}


@dataclass
class EntityRecord:
    """One entity's raw document plus the metadata around it."""
    kind: EntityKind
    name: str
    head: dict = field(default_factory=dict)
    shapes: list = field(default_factory=list)  # list of shape strings
    canvas: str = ""
    layers: list = field(default_factory=list)  # board layer strings
    metadata: dict = field(default_factory=dict)
    source: str = ""


def _as_doc(value, what: str, source: str) -> dict:
    """dataStr is a nested object in current API results, a JSON string in older ones."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise InputError(f"{what} is not valid JSON: {e}", entity=source)
    if not isinstance(value, dict):
        raise InputError(f"{what} is not an object", entity=source)
    return value


def _shapes(doc: dict, source: str) -> list:
    shapes = doc.get("shape", [])
    if not isinstance(shapes, list):
        raise InputError("'shape' is not a list", entity=source)
    return shapes


def _c_para(doc: dict) -> dict:
    head = doc.get("head")
    c_para = head.get("c_para", {}) if isinstance(head, dict) else {}
    return c_para if isinstance(c_para, dict) else {}


def _text(value, default: str = "") -> str:
    """c_para values are usually strings; numbers and nulls show up too."""
    if value is None or isinstance(value, (dict, list)):
        return default
    return str(value).strip() or default


def _symbol_metadata(c_para: dict) -> dict:
    return {
        "prefix": _text(c_para.get("pre")).rstrip("?") or "U",
        "package": _text(c_para.get("package")),
        "lcsc_id": _text(c_para.get("Supplier Part")),
        "manufacturer": _text(c_para.get("Manufacturer")),
        "manufacturer_part": _text(c_para.get("Manufacturer Part")),
        "part_class": _text(c_para.get("JLCPCB Part Class")),
    }


def _record_from_doc(doc: dict, kind: EntityKind, name: str, source: str,
                     metadata: dict = None) -> EntityRecord:
    return EntityRecord(
        kind=kind,
        name=name,
        head=doc["head"] if isinstance(doc.get("head"), dict) else {},
        shapes=_shapes(doc, source),
        canvas=doc.get("canvas", "") or "",
        layers=doc.get("layers", []) or [],
        metadata=metadata or {},
        source=source,
    )


def _records_from_api_result(data: dict, source: str) -> list:
    records = []
    lcsc = data.get("lcsc")
    lcsc = lcsc if isinstance(lcsc, dict) else {}
    symbol_doc = _as_doc(data["dataStr"], "dataStr", source)
    c_para = _c_para(symbol_doc)
    package_detail = data.get("packageDetail")
    package_detail = package_detail if isinstance(package_detail, dict) else {}

    package_name = ""
    if package_detail:
        fp_doc = _as_doc(package_detail.get("dataStr", {}), "packageDetail.dataStr", source)
        package_name = (_text(package_detail.get("title")) or _text(_c_para(fp_doc).get("package"))
                        or _text(c_para.get("package")) or "UnknownFootprint")
        records.append(_record_from_doc(
            fp_doc, EntityKind.FOOTPRINT, package_name, source,
            metadata={"description": _text(data.get("description"))}))

    symbol_name = _text(c_para.get("name")) or _text(data.get("title")) or "Unknown"
    metadata = _symbol_metadata(c_para)
    metadata["package"] = package_name or metadata["package"]
    metadata["datasheet"] = _text(lcsc.get("url"))
    metadata["lcsc_id"] = _text(lcsc.get("number")) or metadata["lcsc_id"]
    records.insert(0, _record_from_doc(
        symbol_doc, EntityKind.SYMBOL, symbol_name, source, metadata=metadata))
    return records


def _records_from_bare_doc(data: dict, source: str) -> list:
    head = data.get("head")
    if not isinstance(head, dict):
        raise InputError("document has no 'head' object", entity=source)
    doc_type = str(head.get("docType", "")).strip()
    kind = _DOC_TYPES.get(doc_type)
    if kind is None:
        raise InputError(f"unsupported docType {doc_type!r}", entity=source)
    c_para = _c_para(data)
    if kind == EntityKind.SYMBOL:
        name = _text(c_para.get("name")) or _text(data.get("title")) or "Unknown"
        metadata = _symbol_metadata(c_para)
    elif kind == EntityKind.FOOTPRINT:
        name = _text(c_para.get("package")) or _text(data.get("title")) or "UnknownFootprint"
        metadata = {}
    else:
        name = _text(data.get("title")) or _text(c_para.get("name")) or Path(source).stem or "board"
        metadata = {}
    return [_record_from_doc(data, kind, name, source, metadata)]


def records_from_json(data, source: str = "") -> list:
    """Split decoded JSON into EntityRecords; raises InputError when unrecognizable."""
    if isinstance(data, list):
        records = []
        for i, item in enumerate(data):
            records.extend(records_from_json(item, f"{source}[{i}]"))
        return records
    if not isinstance(data, dict):
        raise InputError("input is not a JSON object or list", entity=source)
    if isinstance(data.get("result"), (dict, list)):
        return records_from_json(data["result"], source)
    if "dataStr" in data:
        return _records_from_api_result(data, source)
    return _records_from_bare_doc(data, source)


def load_records(path) -> list:
    """Read a JSON file (or every *.json file in a directory) into EntityRecords."""
    path = Path(path)
    if path.is_dir():
        files = sorted(path.glob("*.json"))
        if not files:
            raise InputError(f"no .json files in {path}")
    elif path.is_file():
        files = [path]
    else:
        raise InputError(f"input not found: {path}")

    records = []
    for file in files:
        try:
            data = json.loads(file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise InputError(f"cannot read {file}: {e}", entity=str(file))
        found = records_from_json(data, str(file))
        log.info("%s: %d entities", file.name, len(found))
        records.extend(found)
    return records
