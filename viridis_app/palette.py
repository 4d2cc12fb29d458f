from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import numpy as np

from .exceptions import ValidationError

logger = logging.getLogger(__name__)
_HEX_PATTERN = re.compile(r"#?[0-9A-Fa-f]{6}")


def normalize_hex(value: str) -> str:
    """Return ``value`` as ``#RRGGBB`` uppercase; the leading ``#`` is optional."""
    if not isinstance(value, str) or not _HEX_PATTERN.fullmatch(value):
        raise ValueError(f"not a 6-digit hex color: {value!r}")
    return "#" + value.lstrip("#").upper()


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    digits = normalize_hex(value)[1:]
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


@dataclass(frozen=True, slots=True)
class PaletteEntry:
    hex: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"hex": self.hex, "name": self.name}


class Palette:
    """Immutable catalog of the colors a submitter may choose."""

    def __init__(self, entries: Sequence[PaletteEntry], name: str = "", version: str = "") -> None:
        if not entries:
            raise ValidationError("Palette must contain at least one color")

        seen: set[str] = set()
        normalized: list[PaletteEntry] = []
        for entry in entries:
            hex_value = normalize_hex(entry.hex)
            if hex_value in seen:
                raise ValidationError(f"Duplicate palette color: {hex_value}")
            seen.add(hex_value)
            normalized.append(PaletteEntry(hex=hex_value, name=entry.name))

        self.name = name
        self.version = version
        self._entries = tuple(normalized)
        self._members = frozenset(seen)
        self._rgb = np.array([hex_to_rgb(e.hex) for e in self._entries], dtype=np.float64)

    @classmethod
    def from_file(cls, path: Path) -> "Palette":
        if not path.exists():
            raise ValidationError(f"Palette file not found: {path}")

        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)

        colors = payload.get("colors") if isinstance(payload, dict) else None
        if not isinstance(colors, list):
            raise ValidationError("Palette file must contain a 'colors' array")

        entries = []
        for idx, item in enumerate(colors):
            if not isinstance(item, dict) or "hex" not in item:
                raise ValidationError(f"Palette color {idx} must be an object with a hex value")
            try:
                hex_value = normalize_hex(str(item["hex"]))
            except ValueError as exc:
                raise ValidationError(f"Palette color {idx}: {exc}") from exc
            entries.append(PaletteEntry(hex=hex_value, name=str(item.get("name", hex_value))))

        palette = cls(entries, name=str(payload.get("name", "")), version=str(payload.get("version", "")))
        logger.info("Palette loaded: %s (%s colors)", palette.name or path.name, len(palette))
        return palette

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[PaletteEntry, ...]:
        return self._entries

    def is_member(self, value: str) -> bool:
        try:
            return normalize_hex(value) in self._members
        except ValueError:
            return False

    def nearest(self, rgb: Sequence[float]) -> str:
        target = np.asarray(rgb, dtype=np.float64)
        distances = np.sqrt(((self._rgb - target) ** 2).sum(axis=1))
        # argmin returns the first minimum, so ties resolve in catalog order
        return self._entries[int(np.argmin(distances))].hex

    def snap(self, value: str) -> str:
        return self.nearest(hex_to_rgb(value))

    def random_hex(self, rng: random.Random | None = None) -> str:
        return (rng or random).choice(self._entries).hex

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "colors": [entry.to_dict() for entry in self._entries],
        }
