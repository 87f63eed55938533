from __future__ import annotations

import os
from pathlib import Path

_QUOTE_CHARS = {"'", '"'}


def _parse_assignment(raw_line: str) -> tuple[str, str] | None:
    line = raw_line.strip()
    if not line or line.startswith("#") or "=" not in line:
        return None
    if line.startswith("export "):
        line = line[len("export ") :].lstrip()
    key, value = (part.strip() for part in line.split("=", 1))
    if not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in _QUOTE_CHARS:
        return key, value[1:-1]
    # Inline comments only apply to unquoted values.
    if " #" in value:
        value = value.split(" #", 1)[0].rstrip()
    return key, value


def load_env_file(path: Path | None = None, *, override: bool = False) -> dict[str, str]:
    """Load ``KEY=value`` lines from a .env file into ``os.environ``.

    Settings such as ``AZURE_DOCINTEL_ENDPOINT`` or ``API_KEY`` already present in
    the environment win unless ``override`` is set. Returns the pairs that were applied.
    """

    env_path = path or Path(__file__).resolve().parents[1] / ".env"
    try:
        content = env_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}

    applied: dict[str, str] = {}
    for raw_line in content.splitlines():
        parsed = _parse_assignment(raw_line)
        if parsed is None:
            continue
        key, value = parsed
        if not override and key in os.environ:
            continue
        os.environ[key] = value
        applied[key] = value
    return applied
