from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path

DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_MAX_ENTRY_SIZE = 256 * 1024 * 1024
DEFAULT_MAX_COMPRESSION_RATIO = 1000


@dataclass(frozen=True)
class ReaderConfig:
    max_entries: int = DEFAULT_MAX_ENTRIES
    max_entry_size: int = DEFAULT_MAX_ENTRY_SIZE
    max_compression_ratio: int = DEFAULT_MAX_COMPRESSION_RATIO
    verify_crc: bool = True

    def __post_init__(self) -> None:
        for name in (
            "max_entries",
            "max_entry_size",
            "max_compression_ratio",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


def _load_json(path: Path) -> dict:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Reader config must be a JSON object: {path}")
    return data


def load_reader_config(path: Path) -> ReaderConfig:
    data = _load_json(path)
    known = set(ReaderConfig.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown reader config keys in {path}: {', '.join(unknown)}")
    if "verify_crc" in data and not isinstance(data["verify_crc"], bool):
        raise ValueError(f"verify_crc must be a boolean: {path}")
    return ReaderConfig(**data)


def write_reader_config(config: ReaderConfig, path: Path) -> None:
    path.write_text(
        json.dumps(asdict(config), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
