from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .detectors import DETECTORS, Detector
from .fusion import fuse
from .types import DetectionResult, TechnologyDetection
from ..session import now_iso

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.6


def _run_isolated(label: str, detector: Detector, root: Path) -> list[TechnologyDetection]:
    try:
        return detector(root)
    except Exception as e:
        logger.warning("%s detector failed on %s: %s", label, root, e)
        return []


def detect_technologies(
    project_path: str | Path,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    detectors: dict[str, Detector] | None = None,
) -> DetectionResult:
    # Fan out, fan in: every detector finishes (or fails alone) before fusion.
    root = Path(project_path)
    detectors = DETECTORS if detectors is None else detectors

    with ThreadPoolExecutor(max_workers=max(1, len(detectors))) as pool:
        futures = [pool.submit(_run_isolated, label, fn, root) for label, fn in detectors.items()]
        detections = [d for f in futures for d in f.result()]

    technologies = [t for t in fuse(detections) if t.confidence >= confidence_threshold]
    overall = sum(t.confidence for t in technologies) / len(technologies) if technologies else 0.0

    logger.debug("detected %d technologies in %s", len(technologies), root)
    return DetectionResult(
        technologies=technologies,
        overall_confidence=overall,
        detected_at=now_iso(),
        project_path=str(root),
    )
