import json
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import MalformedOutput


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON through a sibling .tmp file so readers never see a partial document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


def format_vnd(amount: Optional[int]) -> str:
    """Format an amount in dong with vi-VN thousands separators (350000 -> "350.000")."""
    if amount is None:
        return "?"
    sign = "-" if amount < 0 else ""
    return sign + f"{abs(int(amount)):,}".replace(",", ".")


def extract_json_block(text: str) -> Optional[str]:
    """Return the outermost {...} block of a string, or None."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses extract_json_block and json.loads.
    Failure Modes: Returns None on JSONDecodeError, missing block, or non-object JSON.
    Testing Notes: Validate fenced JSON parses and malformed JSON returns None.
    """
    # Parse only the extracted block to tolerate prose or code fences around it.
    block = extract_json_block(text)
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_json_output(text: str) -> Dict[str, Any]:
    """Parse JSON-mode model output or raise MalformedOutput."""
    data = safe_json_loads(text)
    if data is None:
        raise MalformedOutput("Model output is not a JSON object", raw=text)
    return data
