"""Text-level preparation of action snippets.

Snippets are user text. Nothing here parses Python: signatures are rewritten
with a small bracket/quote-aware scanner so a snippet that does not compile
still passes through unchanged apart from its `def` lines.
"""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..flow.models import Action, ActionConfigField

_DEF_RE = re.compile(r"^(\s*)((?:async\s+)?def)\s+([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_TOP_DEF_RE = re.compile(r"^(?:async\s+)?def\s+([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_CONDITIONAL_RE = re.compile(r"\bif\b.*\belse\b")
_WS_RE = re.compile(r"\s+")

_OPEN = "([{"
_CLOSE = ")]}"


def _scan(text: str):
    """Yield `(index, char, depth)` for characters outside string literals."""
    depth = 0
    quote: Optional[str] = None
    escaped = False
    for i, ch in enumerate(text):
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            continue
        if ch == "#":
            return
        if ch in _OPEN:
            depth += 1
        elif ch in _CLOSE:
            depth -= 1
        yield i, ch, depth


def _find_top_level(text: str, target: str, start_depth: int = 0) -> int:
    for i, ch, depth in _scan(text):
        if ch == target and depth == start_depth:
            return i
    return -1


def _split_top_level(text: str, sep: str = ",") -> List[str]:
    parts: list[str] = []
    last = 0
    for i, ch, depth in _scan(text):
        if ch == sep and depth == 0:
            parts.append(text[last:i])
            last = i + 1
    parts.append(text[last:])
    return [p for p in parts if p.strip()]


def _strip_param(param: str) -> str:
    p = param.strip()
    colon = _find_top_level(p, ":")
    if colon < 0:
        return p
    # `key=lambda v: v` has a default but no annotation.
    eq_first = _find_top_level(p, "=")
    if 0 <= eq_first < colon:
        return p
    name = p[:colon].strip()
    rest = p[colon + 1 :]
    eq = _find_top_level(rest, "=")
    if eq < 0:
        return name
    return f"{name}={rest[eq + 1 :].strip()}"


def _signature_end(lines: List[str], start: int) -> int:
    """Index of the line closing the parameter list that opens on `lines[start]`."""
    depth = 0
    for idx in range(start, len(lines)):
        for _i, ch, _d in _scan(lines[idx]):
            if ch in _OPEN:
                depth += 1
            elif ch in _CLOSE:
                depth -= 1
        if depth <= 0:
            return idx
    return len(lines) - 1


def _rewrite_signature(signature: str) -> Optional[str]:
    m = _DEF_RE.match(signature)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = -1
    for i, ch, depth in _scan(signature):
        if i <= open_idx:
            continue
        if ch == ")" and depth == 0:
            close_idx = i
            break
    if close_idx < 0:
        return None

    params = ", ".join(_strip_param(p) for p in _split_top_level(signature[open_idx + 1 : close_idx]))
    tail = signature[close_idx + 1 :]
    if tail.lstrip().startswith("->"):
        colon = _find_top_level(tail, ":")
        if colon < 0:
            return None
        tail = tail[colon:]
    return f"{m.group(1)}{m.group(2)} {m.group(3)}({params}){tail}"


def strip_type_annotations(code: str) -> str:
    """Remove parameter and return annotations from `def` lines.

    Function bodies are left alone. A `def` line holding a conditional
    expression (`a if c else b`) is kept verbatim, as is any signature the
    scanner cannot make sense of.
    """
    lines = str(code or "").splitlines()
    out: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if not _DEF_RE.match(line):
            out.append(line)
            i += 1
            continue
        end = _signature_end(lines, i)
        block = lines[i : end + 1]
        joined = " ".join(part.strip() if n else part.rstrip() for n, part in enumerate(block))
        if _CONDITIONAL_RE.search(joined):
            out.extend(block)
        else:
            rewritten = _rewrite_signature(joined)
            if rewritten is None:
                out.extend(block)
            else:
                out.append(rewritten)
        i = end + 1
    text = "\n".join(out)
    if str(code or "").endswith("\n"):
        text += "\n"
    return text


def find_entry_function(code: str) -> Optional[str]:
    """Name of the first top-level function defined in *code*."""
    for line in str(code or "").splitlines():
        m = _TOP_DEF_RE.match(line)
        if m:
            return m.group(1)
    return None


def normalize_config_key(label: str) -> str:
    """`"Attribute Path"` → `"attribute_path"`."""
    return _WS_RE.sub("_", str(label or "").strip().lower())


def typed_default(field: ActionConfigField) -> Any:
    if field.type == "boolean":
        return False
    if field.type == "number":
        return None
    if field.type == "json":
        return {}
    if field.type == "list":
        return []
    if field.type == "select" and field.options:
        return field.options[0]
    return ""


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def resolve_config(action: Action, stored: Mapping[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Build the literal config handed to an action.

    Returns `(config, missing_required_labels)`. Stored keys are normalised,
    declared fields missing from the stored config get their default, and
    `actionName` is always set.
    """
    config: Dict[str, Any] = {}
    for key, value in (stored or {}).items():
        if key == "actionName":
            continue
        config[normalize_config_key(key)] = copy.deepcopy(value)

    missing: list[str] = []
    for f in action.config:
        key = normalize_config_key(f.label)
        if key in config and not _is_blank(config[key]):
            continue
        if f.has_default:
            config[key] = copy.deepcopy(f.default_value)
            continue
        if key not in config:
            config[key] = typed_default(f)
        if f.required:
            missing.append(f.label)

    config["actionName"] = action.display_name
    return config, missing
