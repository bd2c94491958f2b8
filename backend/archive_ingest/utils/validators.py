"""Validate inbound file/batch fields and convert hashes between hex and bytes."""

from __future__ import annotations

import re
import uuid
from typing import Any

from archive_ingest.core.errors import ValidationError

SHA256_HEX_RE = re.compile(r"[0-9a-fA-F]{64}")
SHA256_BYTES = 32
MAX_PATH_LENGTH = 10000
MAX_ERROR_LENGTH = 10000
MAX_LABEL_LENGTH = 255


def sha256_from_hex(value: Any, field: str = "sha256") -> bytes:
    """Parse a 64-char hex digest (any case) into 32 raw bytes."""
    if not isinstance(value, str) or not SHA256_HEX_RE.fullmatch(value):
        raise ValidationError("must be a 64-character hex string", field=field)
    return bytes.fromhex(value)


def sha256_to_hex(value: bytes | None) -> str | None:
    if value is None:
        return None
    return bytes(value).hex()


def validate_uuid(value: Any, field: str) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError):
        raise ValidationError("must be a valid UUID", field=field) from None


def clip_message(message: str | None) -> str | None:
    """Trim error text to the stored bound."""
    if message is None:
        return None
    return message[:MAX_ERROR_LENGTH]


def _path_errors(path: Any) -> tuple[str, list[dict[str, str]]]:
    clean_path = path.strip() if isinstance(path, str) else ""
    if not clean_path:
        return clean_path, [{"field": "path", "message": "is required"}]
    if len(clean_path) > MAX_PATH_LENGTH:
        return clean_path, [
            {"field": "path", "message": f"must be at most {MAX_PATH_LENGTH} characters"}
        ]
    return clean_path, []


def _size_errors(size_bytes: Any) -> list[dict[str, str]]:
    if size_bytes is None:
        return []
    if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
        return [{"field": "size_bytes", "message": "must be a non-negative integer"}]
    return []


def validate_file_fields(
    path: Any,
    sha256: Any,
    size_bytes: Any = None,
) -> tuple[str, bytes, int | None]:
    """Check a new file record, collecting every field problem at once."""
    clean_path, errors = _path_errors(path)

    digest = b""
    try:
        digest = sha256_from_hex(sha256)
    except ValidationError as exc:
        errors.extend(exc.errors)

    errors.extend(_size_errors(size_bytes))
    if errors:
        raise ValidationError(errors)
    return clean_path, digest, size_bytes


def validate_file_update(path: Any = None, size_bytes: Any = None) -> dict[str, Any]:
    """Check the mutable fields of an existing file; returns only those given."""
    values: dict[str, Any] = {}
    errors: list[dict[str, str]] = []
    if path is not None:
        clean_path, path_errors = _path_errors(path)
        errors.extend(path_errors)
        values["path"] = clean_path
    if size_bytes is not None:
        errors.extend(_size_errors(size_bytes))
        values["size_bytes"] = size_bytes
    if errors:
        raise ValidationError(errors)
    if not values:
        raise ValidationError("nothing to update")
    return values


def validate_batch_fields(
    source_system: Any = None,
    created_by: Any = None,
    file_count_expected: Any = None,
) -> None:
    errors: list[dict[str, str]] = []
    for field, value in (("source_system", source_system), ("created_by", created_by)):
        if value is not None and (not isinstance(value, str) or len(value) > MAX_LABEL_LENGTH):
            errors.append(
                {"field": field, "message": f"must be text of at most {MAX_LABEL_LENGTH} characters"}
            )
    if file_count_expected is not None and (
        isinstance(file_count_expected, bool)
        or not isinstance(file_count_expected, int)
        or file_count_expected < 0
    ):
        errors.append({"field": "file_count_expected", "message": "must be a non-negative integer"})
    if errors:
        raise ValidationError(errors)


def validate_status_code(value: Any, allowed: type, field: str = "status"):
    """Coerce a small-int status code into its enum, rejecting unknown codes."""
    try:
        return allowed(int(value))
    except (TypeError, ValueError):
        codes = ", ".join(f"{member.value} ({member.name})" for member in allowed)
        raise ValidationError(f"must be one of {codes}", field=field) from None


def validate_pagination(page: int, limit: int, max_limit: int = 100) -> tuple[int, int]:
    errors: list[dict[str, str]] = []
    if page < 1:
        errors.append({"field": "page", "message": "must be >= 1"})
    if limit < 1 or limit > max_limit:
        errors.append({"field": "limit", "message": f"must be between 1 and {max_limit}"})
    if errors:
        raise ValidationError(errors)
    return page, limit
