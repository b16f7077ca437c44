from __future__ import annotations

import pytest

from pkg_hybrid.strategy import (
    BuildMode,
    ProjectTraits,
    Verdict,
    decide,
    recommend,
    strategy_verdict,
)
from pkg_hybrid.target import parse_target


SIMPLE = ProjectTraits()


def test_unsupported_forced_native_goes_legacy():
    d = decide(parse_target("node8-linux-x64"), SIMPLE, BuildMode.NATIVE)

    assert d.mode == BuildMode.LEGACY
    assert d.can_use_native is False
    assert d.should_use_native is False
    assert d.reason.startswith("Target validation failed: Node.js version node8 is not supported.")


def test_stable_native_target_goes_native():
    d = decide(parse_target("node21-linux-x64"), SIMPLE)

    assert d.mode == BuildMode.NATIVE
    assert d.should_use_native is True
    assert d.can_use_native is True


def test_pre_stability_target_goes_legacy():
    d = decide(parse_target("node20-linux-x64"), SIMPLE)

    assert d.mode == BuildMode.LEGACY
    assert d.can_use_native is True
    assert d.should_use_native is False
    assert "pre-stability" in d.reason


def test_validation_beats_forced_mode_for_bad_platform():
    d = decide(parse_target("node22-plan9-x64"), SIMPLE, BuildMode.NATIVE)

    assert d.mode == BuildMode.LEGACY
    assert "Platform plan9 is not supported" in d.reason


def test_forced_mode_is_honored_verbatim():
    forced_native = decide(parse_target("node16-linux-x64"), SIMPLE, BuildMode.NATIVE)
    assert forced_native.mode == BuildMode.NATIVE
    assert forced_native.should_use_native is False
    assert forced_native.can_use_native is False
    assert forced_native.reason == "User forced native mode"

    forced_legacy = decide(parse_target("node22-linux-x64"), SIMPLE, BuildMode.LEGACY)
    assert forced_legacy.mode == BuildMode.LEGACY
    assert forced_legacy.should_use_native is False
    assert forced_legacy.can_use_native is True


def test_forced_native_beats_cross_compile():
    traits = ProjectTraits(cross_compile=True)
    d = decide(parse_target("node22-windows-x64"), traits, BuildMode.NATIVE)

    assert d.mode == BuildMode.NATIVE
    assert d.should_use_native is True


def test_version_without_native_support():
    d = decide(parse_target("node18-macos-arm64"), SIMPLE)

    assert d.mode == BuildMode.LEGACY
    assert d.reason == "Node.js node18 does not support single executable applications"


@pytest.mark.parametrize("version", ["node19", "node20", "node21", "node22", "node23", "node24", "latest"])
def test_cross_compile_is_never_native(version):
    d = decide(parse_target(f"{version}-linux-arm64"), ProjectTraits(cross_compile=True))

    assert d.mode == BuildMode.LEGACY
    assert d.should_use_native is False


def test_complex_dynamic_loading_goes_legacy():
    d = decide(parse_target("node22-linux-x64"), ProjectTraits(has_complex_dynamic_loading=True))

    assert d.mode == BuildMode.LEGACY
    assert "Dynamic module loading" in d.reason


def test_assets_do_not_change_the_decision():
    d = decide(parse_target("node22-linux-x64"), ProjectTraits(has_assets=True))

    assert d.mode == BuildMode.NATIVE


def test_should_use_native_tracks_mode():
    targets = [parse_target(f"node{n}-linux-x64") for n in range(8, 26)]
    for target in targets:
        for traits in (SIMPLE, ProjectTraits(cross_compile=True), ProjectTraits(has_complex_dynamic_loading=True)):
            d = decide(target, traits)
            assert d.should_use_native == (d.mode == BuildMode.NATIVE)


def test_decide_is_deterministic():
    target = parse_target("node20-linux-x64")
    traits = ProjectTraits(has_assets=True)

    assert decide(target, traits) == decide(target, traits)


def test_strategy_verdict():
    assert strategy_verdict("node21", SIMPLE) == Verdict.NATIVE
    assert strategy_verdict("node19", SIMPLE) == Verdict.BLENDED
    assert strategy_verdict("node18", SIMPLE) == Verdict.LEGACY
    assert strategy_verdict("node30", SIMPLE) == Verdict.LEGACY
    assert strategy_verdict("node22", ProjectTraits(cross_compile=True)) == Verdict.LEGACY


def test_recommend():
    targets = [
        parse_target("node22-linux-x64"),
        parse_target("node20-linux-x64"),
        parse_target("node16-linux-x64"),
    ]

    rec = recommend(targets, SIMPLE)

    assert rec.can_use_native == 2
    assert rec.should_use_native == 1
    assert rec.recommendations == (
        "1 targets can benefit from native single executables for faster builds and smaller outputs",
        "1 targets require the legacy packager (older Node.js versions or unsupported targets)",
    )


def test_recommend_all_native():
    rec = recommend([parse_target("node22-linux-x64"), parse_target("node24-linux-arm64")], SIMPLE)

    assert rec.should_use_native == 2
    assert rec.recommendations[-1] == "All targets can use native single executables; consider --native"
