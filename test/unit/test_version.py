import pytest

from mixedversion import SpecValidationError, Version
from mixedversion.version import parse_release, resolve_transitions


def versions(*vs: str) -> list[Version]:
    return [Version.parse(v) for v in vs]


def test_parse_release():
    assert str(parse_release("22.1.8")) == "22.1.8"
    assert str(parse_release("v22.1.8")) == "22.1.8"
    assert str(parse_release("22.1.8-14-gdeadbeef")) == "22.1.8"


def test_version_parse_and_format():
    v = Version.parse("v23.1.4")
    assert str(v) == "v23.1.4"
    assert v.series == "23.1"
    assert not v.is_current
    assert Version.parse(v) is v

    with pytest.raises(SpecValidationError, match="invalid version 'banana'"):
        Version.parse("banana")


def test_current_version():
    unnamed = Version.current()
    assert str(unnamed) == "<current>"
    assert unnamed.series == "<current>"

    named = Version.current("24.1.0")
    assert named.is_current
    assert str(named) == "v24.1.0"
    assert named.series == "24.1"


def test_version_ordering():
    assert Version.parse("22.2.3") < Version.parse("23.1.4")
    assert Version.parse("23.1.4") < Version.current()
    assert Version.parse("99.9.9") < Version.current()
    assert Version.parse("23.1.4") < Version.current("23.2.0")
    assert Version.parse("23.1.4") == Version.parse("v23.1.4")
    assert sorted(versions("23.1.4", "22.2.3")) == versions("22.2.3", "23.1.4")


def test_resolve_transitions():
    predecessors = versions("22.2.3", "23.1.4", "23.2.0")

    path = resolve_transitions(predecessors, 1, Version.current())
    assert [str(t) for t in path] == ["v23.2.0 → <current>"]
    assert path[0].is_first and path[0].is_last

    path = resolve_transitions(predecessors, 3, Version.current())
    assert [str(t) for t in path] == [
        "v22.2.3 → v23.1.4",
        "v23.1.4 → v23.2.0",
        "v23.2.0 → <current>",
    ]
    assert [t.index for t in path] == [0, 1, 2]
    assert [t.is_first for t in path] == [True, False, False]
    assert [t.is_last for t in path] == [False, False, True]

    # every transition starts where the previous one ended
    for previous, following in zip(path, path[1:]):
        assert previous.to_version == following.from_version
        assert previous.from_version < previous.to_version


def test_resolve_transitions_concrete_scenario():
    path = resolve_transitions(versions("21.2.11"), 1, Version.current("22.1.8"))

    assert len(path) == 1
    assert path[0].from_version == Version.parse("21.2.11")
    assert path[0].to_version.is_current
    assert path[0].to_version.series == "22.1"


@pytest.mark.parametrize(
    "predecessors, num_upgrades, error",
    [
        ([], 1, "predecessor list is empty"),
        (["23.1.4", "22.2.3"], 1, "must be strictly increasing"),
        (["23.1.4", "23.1.4"], 1, "must be strictly increasing"),
        (["22.2.3", "23.1.4"], 0, "number of upgrades must be positive"),
        (["22.2.3", "23.1.4"], 3, "cannot perform 3 upgrades with 2 predecessors"),
    ],
)
def test_resolve_transitions_errors(predecessors, num_upgrades, error):
    with pytest.raises(SpecValidationError, match=error):
        resolve_transitions(versions(*predecessors), num_upgrades, Version.current())


def test_resolve_transitions_current_checks():
    with pytest.raises(SpecValidationError, match="only contain released versions"):
        resolve_transitions([Version.parse("22.2.3"), Version.current()], 1, Version.current())

    with pytest.raises(SpecValidationError, match="must be the current version"):
        resolve_transitions(versions("22.2.3"), 1, Version.parse("23.1.4"))

    with pytest.raises(SpecValidationError, match="is not newer than the newest predecessor"):
        resolve_transitions(versions("22.2.3", "23.1.4"), 1, Version.current("23.1.4"))
