import pytest

from tbridge.detect.fusion import MAX_CONFIDENCE, fuse
from tbridge.detect.types import TechnologyDetection


def _d(name, conf, source, context=None, version=None):
    return TechnologyDetection(name=name, confidence=conf, source=source, context=context, version=version)


def test_two_sources_get_bonus_capped():
    (vue,) = fuse([_d("Vue.js", 0.9, "package.json"), _d("Vue.js", 0.8, "framework")])

    assert vue.name == "Vue.js"
    assert vue.confidence == pytest.approx(0.95)
    assert vue.source == "package.json"


def test_single_source_no_bonus():
    (ts,) = fuse([_d("TypeScript", 0.85, "file_extensions"), _d("TypeScript", 0.7, "file_extensions")])
    assert ts.confidence == pytest.approx(0.85)


def test_bonus_below_cap():
    (react,) = fuse([_d("React", 0.8, "file_extensions"), _d("React", 0.7, "package.json")])
    assert react.confidence == pytest.approx(0.85)


def test_context_and_version_merge():
    (node,) = fuse(
        [
            _d("Node.js", 0.85, "package.json", context="Dependency: @types/node"),
            _d("Node.js", 0.95, "package.json", context="Engine requirement", version=">=20"),
            _d("Node.js", 0.5, "docker"),
        ]
    )

    assert node.context == "Dependency: @types/node; Engine requirement"
    assert node.version == ">=20"


def test_sorted_by_confidence():
    ranked = fuse([_d("Less", 0.6, "framework"), _d("Docker", 0.95, "docker"), _d("Vite", 0.9, "framework")])
    assert [t.name for t in ranked] == ["Docker", "Vite", "Less"]


def test_never_exceeds_cap_and_never_decreases():
    seen = []
    last = 0.0
    for conf, source in [(0.3, "framework"), (0.3, "framework"), (0.7, "docker"), (0.94, "database"), (0.99, "pyproject")]:
        seen.append(_d("X", conf, source))
        (fused,) = fuse(seen)
        assert fused.confidence <= MAX_CONFIDENCE
        assert fused.confidence >= last
        last = fused.confidence


def test_empty():
    assert fuse([]) == []
