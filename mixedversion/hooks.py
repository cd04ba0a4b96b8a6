from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import enum

from mixedversion.errors import SpecValidationError, UnknownHookError
from mixedversion.stage import Track
from mixedversion.version import Version


@enum.unique
class HookCategory(enum.Enum):
    """
    When a hook runs relative to the upgrade:
    - ON_STARTUP: once, right after the cluster is installed at its initial version.
    - IN_MIXED_VERSION: while nodes run different binaries, between restarts.
    - AFTER_UPGRADE_FINALIZED: after every node acknowledged the new cluster version.
    - BACKGROUND: started once and left running for the rest of the test (workloads).
    """

    ON_STARTUP = "on-startup"
    IN_MIXED_VERSION = "in-mixed-version"
    AFTER_UPGRADE_FINALIZED = "after-upgrade-finalized"
    BACKGROUND = "background"

    @classmethod
    def parse(cls, value: str | HookCategory) -> HookCategory:
        if isinstance(value, HookCategory):
            return value
        try:
            return cls(value)
        except ValueError as e:
            error = f"unknown hook category '{value}'"
            hint = f"expected one of {', '.join(c.value for c in cls)}"
            raise SpecValidationError(f"{error}, {hint}") from e

    def __str__(self) -> str:
        return self.value


Predicate = Callable[[Version, Track], bool]


def from_version(minimum: str | Version) -> Predicate:
    """Hook applies once the track runs `minimum` or a newer version."""
    minimum = Version.parse(minimum)
    return lambda version, track: version >= minimum


def on_tracks(*tracks: Track) -> Predicate:
    """Hook applies only to the listed tracks."""
    return lambda version, track: track in tracks


def all_of(*predicates: Predicate) -> Predicate:
    return lambda version, track: all(p(version, track) for p in predicates)


@dataclass(frozen=True)
class Hook:
    name: str
    category: HookCategory
    applies_to: Optional[Predicate] = field(default=None, compare=False)
    func: Optional[Callable[..., Any]] = field(default=None, compare=False, repr=False)

    def applies(self, version: Version, track: Track) -> bool:
        if self.applies_to is None:
            return True
        return self.applies_to(version, track)

    def __str__(self) -> str:
        return f"{self.name} ({self.category})"


class HookRegistry:
    """
    Catalog of user supplied callbacks. The planner only cares about names,
    categories and applicability; `func` is kept for the executor which
    looks hooks up by name when it runs a plan.

    Declaration order is preserved and used as a deterministic tie-break,
    the actual placement of hook runs is decided by the planner.
    """

    hooks: Dict[str, Hook]
    required: Set[HookCategory]

    def __repr__(self) -> str:
        result = "{"
        for hook in self.hooks.values():
            result += f"\n\t{str(hook)},"
        result += "\n}"
        return result

    def __str__(self) -> str:
        return self.__repr__()

    def __init__(self) -> None:
        self.hooks = {}
        self.required = set()

    def __len__(self) -> int:
        return len(self.hooks)

    def __contains__(self, name: str) -> bool:
        return name in self.hooks

    def register(
        self,
        name: str,
        category: str | HookCategory,
        applies_to: Optional[Predicate] = None,
        func: Optional[Callable[..., Any]] = None,
    ) -> Hook:
        if not name:
            raise SpecValidationError("hook name must not be empty")

        if name in self.hooks:
            error = f"hook '{name}' is registered twice"
            hint = "hook names must be unique across all categories"
            raise SpecValidationError(f"{error}, {hint}")

        hook = Hook(name, HookCategory.parse(category), applies_to, func)
        self.hooks[name] = hook
        return hook

    def on_startup(self, name: str, func: Optional[Callable[..., Any]] = None) -> Hook:
        return self.register(name, HookCategory.ON_STARTUP, func=func)

    def in_mixed_version(
        self,
        name: str,
        func: Optional[Callable[..., Any]] = None,
        applies_to: Optional[Predicate] = None,
    ) -> Hook:
        return self.register(name, HookCategory.IN_MIXED_VERSION, applies_to, func)

    def after_upgrade_finalized(
        self,
        name: str,
        func: Optional[Callable[..., Any]] = None,
        applies_to: Optional[Predicate] = None,
    ) -> Hook:
        return self.register(name, HookCategory.AFTER_UPGRADE_FINALIZED, applies_to, func)

    def workload(self, name: str, func: Optional[Callable[..., Any]] = None) -> Hook:
        return self.register(name, HookCategory.BACKGROUND, func=func)

    def require(self, *categories: str | HookCategory) -> None:
        """Marks categories which must have at least one registered hook."""
        for category in categories:
            self.required.add(HookCategory.parse(category))

    def get(self, name: str) -> Hook:
        hook = self.hooks.get(name)
        if hook is None:
            raise UnknownHookError(name, list(self.hooks))
        return hook

    def of(self, category: HookCategory) -> List[Hook]:
        return [hook for hook in self.hooks.values() if hook.category == category]

    def eligible(self, category: HookCategory, version: Version, track: Track) -> List[Hook]:
        return [hook for hook in self.of(category) if hook.applies(version, track)]

    def validate(self) -> None:
        # NOTE: sorted to keep error messages stable.
        for category in sorted(self.required, key=lambda c: c.value):
            if not self.of(category):
                error = f"no hooks registered for required category '{category}'"
                hint = "register at least one hook or drop the requirement"
                raise SpecValidationError(f"{error}, {hint}")
