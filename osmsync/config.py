from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from dataclasses import field
from dataclasses import fields
from typing import Any


def _default_concurrency() -> int:
    return os.cpu_count() or 1


@dataclass
class PipelineConfig:
    # Number of decoded blocks handed to the store per batch.
    batch_size: int = 16
    concurrency: int = field(default_factory=_default_concurrency)
    use_processes: bool = False

    source_crs: str = "EPSG:4326"
    target_crs: str = "EPSG:3857"

    progress: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> PipelineConfig:
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in values.items() if key in names})
