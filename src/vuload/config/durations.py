from __future__ import annotations

import re

from vuload.errors import ConfigError

_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse ``"30s"``, ``"1m30s"``, ``"500ms"`` or bare seconds into seconds."""
    value = text.strip()
    if not value:
        msg = "Empty duration"
        raise ConfigError(msg)
    try:
        return float(value)
    except ValueError:
        pass
    total = 0.0
    pos = 0
    for match in _PART.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    if pos != len(value):
        msg = f"Invalid duration: {text!r}"
        raise ConfigError(msg)
    return total
