"""Repair staged-change files in the pending queue.

Rewrites each record in canonical form (string ids, upper-cased option
labels, only operations that validate). Records whose JSON no longer
parses are salvaged: top-level string fields are extracted by pattern and
the `operations` array is cut out with a bracket-matching scanner, then
each object inside it is validated on its own.

Dry-run unless `write=True`.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from src.changes.operations import (
    ChangeOperation,
    CreateQuestion,
    OptionInput,
    normalize_label,
    parse_operation,
    serialize_operations,
)
from src.changes.schemas import coerce_string_array, normalize_timestamp
from src.tools.definitions import DEFAULT_PROPOSER_NAME

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("courseCode", "issueSummary", "recommendedFix")
LABEL_FIELDS = ("new_correct_option", "option_number", "correct_option")


class RepairStatus(str, Enum):
    UNCHANGED = "unchanged"
    REPAIRED = "repaired"
    SALVAGED = "salvaged"
    UNREPAIRABLE = "unrepairable"


@dataclass
class RepairResult:
    path: Path
    status: RepairStatus
    operations: int = 0
    message: str = ""


def normalize_operation(operation: ChangeOperation) -> ChangeOperation:
    """Upper-case every option label an operation carries."""
    update: dict[str, Any] = {
        name: normalize_label(getattr(operation, name))
        for name in LABEL_FIELDS
        if isinstance(getattr(operation, name, None), str)
    }
    if isinstance(operation, CreateQuestion):
        update["options"] = [
            OptionInput(option_number=normalize_label(o.option_number), option_text=o.option_text)
            for o in operation.options
        ]
    return operation.model_copy(update=update) if update else operation


def _validate_operations(entries: list[Any], source: str) -> list[ChangeOperation]:
    operations = []
    for index, entry in enumerate(entries, start=1):
        try:
            operations.append(normalize_operation(parse_operation(entry)))
        except ValidationError as e:
            logger.warning(f"[repair:{source}] Skipping invalid operation {index}: {e.error_count()} error(s)")
    return operations


def match_string_field(source: str, key: str) -> Optional[str]:
    match = re.search(rf'"{re.escape(key)}"\s*:\s*"((?:[^"\\]|\\.)*)"', source, re.IGNORECASE)
    if not match:
        return None
    try:
        return json.loads(f'"{match.group(1)}"')
    except ValueError:
        return match.group(1)


def balanced_segment(source: str, start: int, opener: str, closer: str) -> Optional[str]:
    """The bracketed segment beginning at source[start], ignoring brackets in strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(source)):
        char = source[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return source[start : i + 1]
    return None


def match_array_segment(source: str, key: str) -> Optional[str]:
    key_index = source.find(f'"{key}"')
    if key_index == -1:
        return None
    start = source.find("[", key_index)
    if start == -1:
        return None
    return balanced_segment(source, start, "[", "]")


def extract_objects(segment: str) -> list[Any]:
    """Every top-level {...} in an array segment that parses as JSON."""
    objects = []
    i = 1
    while i < len(segment):
        if segment[i] != "{":
            i += 1
            continue
        chunk = balanced_segment(segment, i, "{", "}")
        if chunk is None:
            break
        try:
            objects.append(json.loads(chunk))
        except ValueError:
            logger.debug(f"Skipping malformed object: {chunk[:120]}")
        i += len(chunk)
    return objects


def _canonical_record(data: dict[str, Any], operations: list[ChangeOperation]) -> dict[str, Any]:
    record: dict[str, Any] = {
        "createdAt": normalize_timestamp(data.get("createdAt")),
        "courseCode": data["courseCode"],
        "issueSummary": data["issueSummary"],
        "recommendedFix": data["recommendedFix"],
        "operations": serialize_operations(operations),
        "supportingNotes": coerce_string_array(data.get("supportingNotes")),
        "reporter": data.get("reporter") if isinstance(data.get("reporter"), str) else DEFAULT_PROPOSER_NAME,
    }
    if isinstance(data.get("reviewer"), dict):
        record["reviewer"] = data["reviewer"]
    return record


def salvage_record(raw: str, source: str = "") -> Optional[tuple[dict[str, Any], list[ChangeOperation]]]:
    """Recover fields and operations from text that is not valid JSON."""
    segment = match_array_segment(raw, "operations")
    if segment is None:
        return None
    operations = _validate_operations(extract_objects(segment), source)
    if not operations:
        return None

    data: dict[str, Any] = {key: match_string_field(raw, key) for key in (*REQUIRED_FIELDS, "createdAt", "reporter")}
    notes_segment = match_array_segment(raw, "supportingNotes")
    if notes_segment:
        try:
            data["supportingNotes"] = json.loads(notes_segment)
        except ValueError:
            data["supportingNotes"] = []
    return data, operations


def repair_file(path: Path, write: bool = False) -> RepairResult:
    raw = path.read_text(encoding="utf-8")
    status = RepairStatus.REPAIRED
    try:
        data = json.loads(raw)
    except ValueError:
        data = None

    if isinstance(data, dict):
        entries = data.get("operations") if isinstance(data.get("operations"), list) else []
        operations = _validate_operations(entries, path.name)
    else:
        salvaged = salvage_record(raw, path.name)
        if salvaged is None:
            return RepairResult(path, RepairStatus.UNREPAIRABLE, message="no recoverable operations")
        data, operations = salvaged
        status = RepairStatus.SALVAGED

    missing = [key for key in REQUIRED_FIELDS if not isinstance(data.get(key), str) or not data.get(key)]
    if missing:
        return RepairResult(path, RepairStatus.UNREPAIRABLE, message=f"missing {', '.join(missing)}")
    if not operations:
        return RepairResult(path, RepairStatus.UNREPAIRABLE, message="no valid operations")

    record = _canonical_record(data, operations)
    body = json.dumps(record, indent=2, ensure_ascii=False) + "\n"
    if status == RepairStatus.REPAIRED and body == raw:
        return RepairResult(path, RepairStatus.UNCHANGED, operations=len(operations))

    if write:
        path.write_text(body, encoding="utf-8")
    return RepairResult(path, status, operations=len(operations))


def repair_directory(changes_dir: Union[str, Path], write: bool = False) -> list[RepairResult]:
    """Repair every pending record directly under changes_dir."""
    results = []
    for path in sorted(Path(changes_dir).glob("*.json")):
        if path.name.startswith("."):
            continue
        result = repair_file(path, write=write)
        if result.status == RepairStatus.UNREPAIRABLE:
            logger.warning(f"[repair] Unable to repair {path.name}: {result.message}")
        elif result.status != RepairStatus.UNCHANGED:
            verb = "Rewrote" if write else "Would rewrite"
            logger.info(f"[repair] {verb} {path.name} ({result.status.value}, {result.operations} operations)")
        results.append(result)
    return results
