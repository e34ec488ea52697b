from __future__ import annotations

from .types import TechnologyDetection

MAX_CONFIDENCE = 0.95
MULTI_SOURCE_BONUS = 0.05


def fuse(detections: list[TechnologyDetection]) -> list[TechnologyDetection]:
    """Merge detections of the same technology into one ranked entry.

    Confidence is the best single observation, plus a small bonus when more
    than one detector agrees, capped at 0.95. The first detection seen for a
    name decides the reported source.
    """
    groups: dict[str, list[TechnologyDetection]] = {}
    for d in detections:
        groups.setdefault(d.name, []).append(d)

    out: list[TechnologyDetection] = []
    for name, group in groups.items():
        best = max(d.confidence for d in group)
        bonus = MULTI_SOURCE_BONUS if len({d.source for d in group}) > 1 else 0.0
        out.append(
            TechnologyDetection(
                name=name,
                confidence=min(best + bonus, MAX_CONFIDENCE),
                source=group[0].source,
                version=next((d.version for d in group if d.version), None),
                context="; ".join(d.context for d in group if d.context),
            )
        )

    out.sort(key=lambda t: t.confidence, reverse=True)
    return out
