from __future__ import annotations

import csv
import io
import json
from typing import Any, Dict, List


def _list_item(item: Any) -> str:
    if isinstance(item, (dict, list)):
        return json.dumps(item)
    return "" if item is None else str(item)


def flatten_record(obj: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flatten nested dicts into dotted keys; lists become ``"; "``-joined strings."""
    flat: Dict[str, Any] = {}
    for key, value in obj.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            flat.update(flatten_record(value, name))
        elif isinstance(value, list):
            flat[name] = "; ".join(_list_item(item) for item in value)
        else:
            flat[name] = value
    return flat


def records_to_csv(records: List[Dict[str, Any]]) -> str:
    if not records:
        return ""
    rows = [flatten_record(record) for record in records]
    fieldnames: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                fieldnames.append(key)

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()
