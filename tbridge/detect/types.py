from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Source = Literal[
    "package.json",
    "deno.json",
    "pyproject",
    "requirements",
    "file_extensions",
    "framework",
    "database",
    "docker",
    "unknown",
]


@dataclass
class TechnologyDetection:
    name: str           # e.g. "TypeScript", "React", "FastAPI"
    confidence: float   # 0..1
    source: Source
    version: str | None = None
    context: str | None = None


@dataclass
class DetectionResult:
    technologies: list[TechnologyDetection] = field(default_factory=list)
    overall_confidence: float = 0.0
    detected_at: str = ""
    project_path: str = ""
