from __future__ import annotations

from dataclasses import dataclass
from funcy import pairwise
from packaging.version import InvalidVersion
from packaging.version import Version as AbsoluteVersion
from typing import List, Optional, Sequence

import functools

from mixedversion.errors import SpecValidationError


def parse_release(v: str) -> AbsoluteVersion:
    """
    Parses a release string such as `22.1.8`, `v22.1.8` or `22.1.8-14-gdeadbeef`
    (the output of `git describe`).
    """
    v = str(v).strip()
    try:
        return AbsoluteVersion(v)
    except InvalidVersion as e:
        invalid_version_exception = e

    try:
        version, hash = v.split("-", maxsplit=1)
        _ = hash
        return AbsoluteVersion(version)
    except (ValueError, InvalidVersion):
        # If that didn't work, just raise the original exception
        raise invalid_version_exception from invalid_version_exception


@functools.total_ordering
@dataclass(frozen=True)
class Version:
    """
    A released version of the database, or the version under test.

    The version under test (see `Version.current`) may or may not know its
    release number. Either way it sorts after every released version.
    """

    release: Optional[AbsoluteVersion]
    is_current: bool = False

    @classmethod
    def parse(cls, v: str | Version) -> Version:
        if isinstance(v, Version):
            return v

        try:
            return cls(parse_release(v))
        except InvalidVersion as e:
            error = f"invalid version '{v}'"
            hint = "expected something like '23.1.4' or 'v23.1.4'"
            raise SpecValidationError(f"{error}, {hint}") from e

    @classmethod
    def current(cls, release: str | None = None) -> Version:
        if release is None:
            return cls(None, is_current=True)
        return cls(cls.parse(release).release, is_current=True)

    @property
    def series(self) -> str:
        """
        Cluster version nodes acknowledge once this release is finalized, e.g. `22.1`.
        """
        if self.release is None:
            return "<current>"
        return f"{self.release.major}.{self.release.minor}"

    def _key(self) -> tuple:
        return (self.is_current, self.release or AbsoluteVersion("0"))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        if self.release is None:
            return "<current>"
        return f"v{self.release}"


@dataclass(frozen=True)
class Transition:
    from_version: Version
    to_version: Version
    index: int

    @property
    def is_first(self) -> bool:
        return self.index == 0

    @property
    def is_last(self) -> bool:
        return self.to_version.is_current

    def __str__(self) -> str:
        return f"{self.from_version} → {self.to_version}"


def resolve_transitions(
    predecessors: Sequence[Version],
    num_upgrades: int,
    current: Version,
) -> List[Transition]:
    """
    Turns a list of predecessor releases into the upgrade path exercised by a test.

    The path starts `num_upgrades` releases back from the version under test and
    walks every following predecessor, always ending at `current`:

        >>> path = resolve_transitions([Version.parse(v) for v in ["22.2.3", "23.1.4", "23.2.0"]], 2, Version.current())
        >>> [str(t) for t in path]
        ['v23.1.4 → v23.2.0', 'v23.2.0 → <current>']
    """
    if not predecessors:
        error = "predecessor list is empty"
        hint = "at least one released version is needed to upgrade from"
        raise SpecValidationError(f"{error}, {hint}")

    for v in predecessors:
        if v.is_current:
            raise SpecValidationError(f"predecessor list must only contain released versions, got {v}")

    for older, newer in pairwise(predecessors):
        if not older < newer:
            error = f"predecessor list must be strictly increasing, but {older} is followed by {newer}"
            hint = "list versions from the oldest to the newest"
            raise SpecValidationError(f"{error}, {hint}")

    if not current.is_current:
        raise SpecValidationError(f"upgrade target must be the current version, got {current}")

    newest = predecessors[-1]
    if current.release is not None and current.release <= newest.release:
        error = f"current version {current} is not newer than the newest predecessor {newest}"
        hint = "drop predecessors which are not older than the version under test"
        raise SpecValidationError(f"{error}, {hint}")

    if num_upgrades < 1:
        raise SpecValidationError(f"number of upgrades must be positive, got {num_upgrades}")

    if num_upgrades > len(predecessors):
        error = f"cannot perform {num_upgrades} upgrades with {len(predecessors)} predecessors"
        hint = "add older releases to the predecessor list or lower the number of upgrades"
        raise SpecValidationError(f"{error}, {hint}")

    path = list(predecessors[-num_upgrades:]) + [current]
    return [Transition(older, newer, index) for index, (older, newer) in enumerate(pairwise(path))]
