"""Schema registry validation.

Checks a raw registry document (as loaded from YAML/JSON) before it is turned
into models. Returns a list of ValidationErrorRecord; empty list means success.
"""

from __future__ import annotations
from typing import Any, Dict, List

from ..cache.constants import MAX_ALIGNMENT, REGISTRY_FORMAT
from .models import FIELD_KINDS, FIELD_WIDTHS


class ValidationErrorRecord:
    def __init__(self, code: str, message: str, path: str = "") -> None:
        self.code = code
        self.message = message
        self.path = path

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "path": self.path}

    def __repr__(self) -> str:  # convenience for tests
        return f"ValidationErrorRecord(code={self.code}, path={self.path}, message={self.message})"


def _err(
    errors: List[ValidationErrorRecord], code: str, message: str, path: str
):
    errors.append(ValidationErrorRecord(code, message, path))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_signature(
    errors: List[ValidationErrorRecord], sig: Any, path: str
) -> None:
    if not isinstance(sig, str):
        _err(errors, "E_TYPE", "Class signature must be a string", path)
        return
    try:
        raw = sig.encode("latin-1")
    except UnicodeEncodeError:
        _err(errors, "E_SIGNATURE", "Class signature must be latin-1", path)
        return
    if len(raw) != 4:
        _err(errors, "E_SIGNATURE", "Class signature must be 4 characters", path)


def _check_fields(
    errors: List[ValidationErrorRecord], fields: Any, path: str
) -> None:
    if not isinstance(fields, list):
        _err(errors, "E_TYPE", "'fields' must be a list", path)
        return
    spans: list[tuple[int, int, int]] = []
    for i, f in enumerate(fields):
        fpath = f"{path}[{i}]"
        if not isinstance(f, dict):
            _err(errors, "E_TYPE", "Field must be object", fpath)
            continue
        offset = f.get("offset")
        width = f.get("width", 4)
        kind = f.get("kind", "address")
        if not _is_int(offset) or offset < 0:
            _err(errors, "E_FIELD", "Missing or negative offset", fpath + ".offset")
            continue
        if width not in FIELD_WIDTHS:
            _err(errors, "E_WIDTH", f"Width must be one of {FIELD_WIDTHS}", fpath + ".width")
            continue
        if kind not in FIELD_KINDS:
            _err(errors, "E_KIND", f"Kind must be one of {FIELD_KINDS}", fpath + ".kind")
        if "external" in f and not isinstance(f["external"], bool):
            _err(errors, "E_TYPE", "'external' must be boolean", fpath + ".external")
        spans.append((offset, offset + width, i))
    spans.sort()
    for (s0, e0, i0), (s1, _e1, i1) in zip(spans, spans[1:]):
        if s1 < e0:
            _err(
                errors,
                "E_OVERLAP",
                f"Field {i1} overlaps field {i0} at offset {s1:#x}",
                f"{path}[{i1}]",
            )


def _check_prune_roots(
    errors: List[ValidationErrorRecord], roots: Any, path: str
) -> None:
    if not isinstance(roots, list):
        _err(errors, "E_TYPE", "'prune_roots' must be a list", path)
        return
    for i, root in enumerate(roots):
        rpath = f"{path}[{i}]"
        if not isinstance(root, dict):
            _err(errors, "E_TYPE", "Prune root must be object", rpath)
            continue
        if "class" not in root:
            _err(errors, "E_ROOT", "Prune root needs a 'class'", rpath + ".class")
        else:
            _check_signature(errors, root["class"], rpath + ".class")
        if "path" in root and not isinstance(root["path"], str):
            _err(errors, "E_TYPE", "'path' must be a string", rpath + ".path")


def validate_registry(data: Dict[str, Any]) -> List[ValidationErrorRecord]:
    errors: List[ValidationErrorRecord] = []
    fmt = data.get("registry_format", REGISTRY_FORMAT)
    if fmt != REGISTRY_FORMAT:
        _err(errors, "E_FORMAT", f"Unsupported registry format {fmt}", "registry_format")
    classes = data.get("classes")
    if not isinstance(classes, dict):
        _err(errors, "E_TYPE", "'classes' must be a mapping", "classes")
        return errors
    for sig, body in classes.items():
        cpath = f"classes.{sig}"
        _check_signature(errors, sig, cpath)
        if body is None:
            continue
        if not isinstance(body, dict):
            _err(errors, "E_TYPE", "Class entry must be object", cpath)
            continue
        alignment = body.get("alignment", 1)
        if (
            not _is_int(alignment)
            or alignment < 1
            or alignment > MAX_ALIGNMENT
            or alignment & (alignment - 1)
        ):
            _err(
                errors,
                "E_ALIGNMENT",
                f"Alignment must be a power of two <= {MAX_ALIGNMENT}",
                cpath + ".alignment",
            )
        _check_fields(errors, body.get("fields", []), cpath + ".fields")
    if "prune_roots" in data:
        _check_prune_roots(errors, data["prune_roots"], "prune_roots")
    return errors


__all__ = ["ValidationErrorRecord", "validate_registry"]
