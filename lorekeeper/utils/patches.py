"""Unified diff and JSON Patch helpers for patch proposals."""

import json
import re
from dataclasses import dataclass
from typing import Any, Literal

import jsonpatch

from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)

PatchKind = Literal["unified_diff", "json_patch"]

_HUNK_HEADER_RE = re.compile(
    r"^@@\s+-(?P<old_start>\d+)(?:,(?P<old_len>\d+))?\s+\+(?P<new_start>\d+)(?:,(?P<new_len>\d+))?\s+@@"
)


class PatchApplicationError(ValueError):
    """Raised when a patch cannot be applied to a field."""

    def __init__(self, message: str, field: str = "", patch_type: PatchKind = "unified_diff"):
        super().__init__(message)
        self.field = field
        self.patch_type = patch_type


@dataclass
class _Hunk:
    header: str
    old_start: int
    old_len: int
    lines: list[tuple[str, str]]

    @property
    def old_lines(self) -> list[str]:
        return [text for op, text in self.lines if op in (" ", "-")]

    @property
    def new_lines(self) -> list[str]:
        return [text for op, text in self.lines if op in (" ", "+")]


def _parse_unified_diff(diff: str) -> list[_Hunk]:
    hunks: list[_Hunk] = []
    current: _Hunk | None = None

    for raw_line in diff.splitlines():
        match = _HUNK_HEADER_RE.match(raw_line)
        if match:
            old_len = match.group("old_len")
            current = _Hunk(
                header=raw_line,
                old_start=int(match.group("old_start")),
                old_len=int(old_len) if old_len is not None else 1,
                lines=[],
            )
            hunks.append(current)
            continue

        if current is None:
            # File headers and anything else before the first hunk
            continue
        if raw_line.startswith(("--- ", "+++ ")) and not current.lines:
            continue
        if raw_line.startswith("\\"):
            # "\ No newline at end of file"
            continue
        if raw_line == "":
            current.lines.append((" ", ""))
        elif raw_line[0] in (" ", "-", "+"):
            current.lines.append((raw_line[0], raw_line[1:]))
        else:
            raise PatchApplicationError(f"Invalid unified diff line: {raw_line!r}")

    return hunks


def _locate_hunk(lines: list[str], hunk: _Hunk, cursor: int) -> int:
    """Find where the hunk's old lines sit, preferring the header position."""
    old_lines = hunk.old_lines
    expected = hunk.old_start - 1 if hunk.old_len > 0 else hunk.old_start
    expected = max(expected, cursor)

    if not old_lines:
        return min(expected, len(lines))

    last_start = len(lines) - len(old_lines)
    expected = min(expected, max(last_start, cursor))
    for offset in range(0, len(lines) + 1):
        for candidate in (expected - offset, expected + offset):
            if cursor <= candidate <= last_start and lines[candidate : candidate + len(old_lines)] == old_lines:
                return candidate

    raise PatchApplicationError(f"Hunk {hunk.header} does not match the original content")


def apply_unified_diff(original: str, diff: str) -> str:
    """Apply a unified diff to text and return the patched text.

    Raises:
        PatchApplicationError: If the diff has no hunks or its context does not match.
    """
    hunks = _parse_unified_diff(diff)
    if not hunks:
        raise PatchApplicationError("Invalid unified diff: no hunks found")

    lines = original.splitlines()
    trailing_newline = original.endswith("\n")
    result: list[str] = []
    cursor = 0

    for hunk in hunks:
        start = _locate_hunk(lines, hunk, cursor)
        result.extend(lines[cursor:start])
        result.extend(hunk.new_lines)
        cursor = start + len(hunk.old_lines)

    result.extend(lines[cursor:])

    patched = "\n".join(result)
    if trailing_newline and result:
        patched += "\n"
    return patched


def parse_json_patch(patch: str) -> list[dict[str, Any]]:
    """Parse a JSON Patch document into its list of operations."""
    try:
        operations = json.loads(patch)
    except json.JSONDecodeError as e:
        raise PatchApplicationError(
            f"Invalid JSON patch: failed to parse as JSON - {e}", patch_type="json_patch"
        ) from e

    if not isinstance(operations, list):
        raise PatchApplicationError("JSON Patch must be an array of operations", patch_type="json_patch")

    for operation in operations:
        if not isinstance(operation, dict):
            raise PatchApplicationError("Each JSON Patch operation must be an object", patch_type="json_patch")
        if not isinstance(operation.get("op"), str):
            raise PatchApplicationError('Each JSON Patch operation must have an "op" field', patch_type="json_patch")
        if not isinstance(operation.get("path"), str):
            raise PatchApplicationError(
                'Each JSON Patch operation must have a "path" field', patch_type="json_patch"
            )

    return operations


def apply_json_patch(document: Any, operations: list[dict[str, Any]]) -> Any:
    """Apply RFC 6902 operations to a document without mutating it."""
    try:
        return jsonpatch.JsonPatch(operations).apply(document, in_place=False)
    except (jsonpatch.JsonPatchException, jsonpatch.JsonPointerException) as e:
        raise PatchApplicationError(f"Invalid JSON patch: {e}", patch_type="json_patch") from e


def _apply_one(current_value: Any, patch_type: str, patch: str) -> Any:
    if patch_type == "unified_diff":
        original = "" if current_value is None else str(current_value)
        return apply_unified_diff(original, patch)

    # JSON fields are stored as serialized strings
    if isinstance(current_value, str):
        document = json.loads(current_value) if current_value.strip() else {}
        return json.dumps(apply_json_patch(document, parse_json_patch(patch)))
    document = current_value if current_value is not None else {}
    return apply_json_patch(document, parse_json_patch(patch))


def apply_field_patches(current_data: dict[str, Any], patches: list) -> dict[str, Any]:
    """Apply field patches in order and return the patched copy of the data.

    Each patch needs `field`, `patch_type` and `patch` attributes (see FieldPatch).

    Raises:
        PatchApplicationError: On the first patch that fails, tagged with its field.
    """
    result = dict(current_data)
    for field_patch in patches:
        try:
            result[field_patch.field] = _apply_one(
                result.get(field_patch.field), field_patch.patch_type, field_patch.patch
            )
        except PatchApplicationError as e:
            raise PatchApplicationError(str(e), field=field_patch.field, patch_type=field_patch.patch_type) from e
        except json.JSONDecodeError as e:
            raise PatchApplicationError(
                f"Current value is not valid JSON: {e}", field=field_patch.field, patch_type=field_patch.patch_type
            ) from e
    return result


def validate_field_patches(current_data: dict[str, Any], patches: list) -> list[PatchApplicationError]:
    """Collect one error per patch that cannot be applied."""
    errors: list[PatchApplicationError] = []
    result = dict(current_data)
    for field_patch in patches:
        try:
            result = apply_field_patches(result, [field_patch])
        except PatchApplicationError as e:
            logger.debug(f"Patch for field {field_patch.field} failed: {e}")
            errors.append(e)
    return errors
