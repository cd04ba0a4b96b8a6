from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import enum

import yaml as yaml_lib  # type: ignore

from mixedversion.errors import SpecValidationError
from mixedversion.hooks import HookCategory, HookRegistry, Predicate, all_of, from_version, on_tracks
from mixedversion.perturb import HookPolicy, RollbackPolicy
from mixedversion.stage import Track
from mixedversion.version import Transition, Version, resolve_transitions

DEFAULT_NODES = 4
DEFAULT_TENANT_NAME = "mixed-version-tenant"


@enum.unique
class DeploymentMode(enum.Enum):
    """
    - SHARED_PROCESS: tenants live in the same process as the system tenant,
      so there is one upgrade timeline for the whole cluster.
    - SEPARATE_PROCESS: a tenant runs its own processes which are upgraded
      after the system tenant finished upgrading.
    """

    SHARED_PROCESS = "shared-process"
    SEPARATE_PROCESS = "separate-process"

    @classmethod
    def parse(cls, value: str | DeploymentMode) -> DeploymentMode:
        if isinstance(value, DeploymentMode):
            return value
        try:
            return cls(value)
        except ValueError as e:
            error = f"unknown deployment mode '{value}'"
            hint = f"expected one of {', '.join(m.value for m in cls)}"
            raise SpecValidationError(f"{error}, {hint}") from e

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class UpgradeSpec:
    """
    Everything a single plan is built from. Constructed explicitly for every
    planner run and never shared between runs.
    """

    predecessors: Tuple[Version, ...]
    num_upgrades: int
    deployment_mode: DeploymentMode = DeploymentMode.SHARED_PROCESS
    current: Version = field(default_factory=Version.current)
    nodes: int = DEFAULT_NODES
    seed: Optional[int] = None
    hooks: HookRegistry = field(default_factory=HookRegistry, compare=False)
    rollback: RollbackPolicy = RollbackPolicy()
    hook_policy: HookPolicy = HookPolicy()
    tenant_version: Optional[Version] = None
    tenant_name: str = DEFAULT_TENANT_NAME

    @classmethod
    def create(
        cls,
        predecessors: Iterable[str | Version],
        num_upgrades: int,
        current: str | Version | None = None,
        **kwargs: Any,
    ) -> UpgradeSpec:
        if current is None:
            current = Version.current()
        elif not isinstance(current, Version) or not current.is_current:
            current = Version.current(str(current))

        if "deployment_mode" in kwargs:
            kwargs["deployment_mode"] = DeploymentMode.parse(kwargs["deployment_mode"])
        if kwargs.get("tenant_version") is not None:
            kwargs["tenant_version"] = Version.parse(kwargs["tenant_version"])

        return cls(
            predecessors=tuple(Version.parse(v) for v in predecessors),
            num_upgrades=num_upgrades,
            current=current,
            **kwargs,
        )

    @property
    def is_separate_process(self) -> bool:
        return self.deployment_mode is DeploymentMode.SEPARATE_PROCESS

    def with_seed(self, seed: int) -> UpgradeSpec:
        return replace(self, seed=seed)

    def with_nodes(self, nodes: int) -> UpgradeSpec:
        return replace(self, nodes=nodes)

    def transitions(self) -> List[Transition]:
        return resolve_transitions(self.predecessors, self.num_upgrades, self.current)


KNOWN_KEYS = {
    "deployment_mode",
    "predecessors",
    "num_upgrades",
    "current",
    "nodes",
    "seed",
    "rollback",
    "hook_probability",
    "hooks",
    "workloads",
    "require",
    "tenant_version",
    "tenant_name",
}


def _expect(document: Dict[str, Any], key: str, *kinds: type) -> Any:
    value = document[key]
    # NOTE: bool is a subclass of int, `nodes: yes` must not pass as 1 node.
    if (isinstance(value, bool) and bool not in kinds) or not isinstance(value, kinds):
        error = f"'{key}' has unexpected type {type(value).__name__}"
        hint = f"expected {' or '.join(kind.__name__ for kind in kinds)}"
        raise SpecValidationError(f"{error}, {hint}")
    return value


def _expect_list(document: Dict[str, Any], key: str) -> List[Any]:
    """An optional list, a missing or empty value is an empty list."""
    if document.get(key) is None:
        return []
    return _expect(document, key, list)


def _hook_predicate(entry: Dict[str, Any]) -> Optional[Predicate]:
    predicates: List[Predicate] = []
    if "from_version" in entry:
        predicates.append(from_version(str(entry["from_version"])))
    if "tracks" in entry:
        try:
            tracks = [Track(t) for t in _expect(entry, "tracks", list)]
        except ValueError as e:
            error = f"hook '{entry.get('name')}' lists unknown tracks {entry['tracks']}"
            hint = f"expected any of {', '.join(t.value for t in Track)}"
            raise SpecValidationError(f"{error}, {hint}") from e
        predicates.append(on_tracks(*tracks))

    match predicates:
        case []:
            return None
        case [predicate]:
            return predicate
        case _:
            return all_of(*predicates)


def _load_hooks(document: Dict[str, Any]) -> HookRegistry:
    registry = HookRegistry()

    hooks = document.get("hooks") or {}
    if not isinstance(hooks, dict):
        raise SpecValidationError("'hooks' must map hook categories to lists of hooks")

    for key in hooks:
        category = HookCategory.parse(key)
        for entry in _expect_list(hooks, key):
            match entry:
                case str(name):
                    registry.register(name, category)
                case {"name": str(name), **rest}:
                    unknown = set(rest) - {"from_version", "tracks"}
                    if unknown:
                        raise SpecValidationError(f"hook '{name}' has unknown keys: {', '.join(sorted(unknown))}")
                    registry.register(name, category, _hook_predicate(entry))
                case _:
                    raise SpecValidationError(f"cannot parse hook entry {entry!r} in category '{category}'")

    for name in _expect_list(document, "workloads"):
        if not isinstance(name, str):
            raise SpecValidationError(f"cannot parse workload entry {name!r}, expected a hook name")
        registry.workload(name)

    registry.require(*_expect_list(document, "require"))
    return registry


def parse_spec(text: str) -> UpgradeSpec:
    try:
        document = yaml_lib.safe_load(text)
    except yaml_lib.YAMLError as e:
        raise SpecValidationError(f"spec is not a valid YAML document: {e}") from e

    if not isinstance(document, dict):
        raise SpecValidationError("spec must be a YAML mapping")

    unknown = set(document) - KNOWN_KEYS
    if unknown:
        error = f"unknown spec keys: {', '.join(sorted(unknown))}"
        hint = f"known keys are {', '.join(sorted(KNOWN_KEYS))}"
        raise SpecValidationError(f"{error}, {hint}")

    for key in ["predecessors", "num_upgrades"]:
        if key not in document:
            raise SpecValidationError(f"spec is missing required key '{key}'")

    predecessors = _expect(document, "predecessors", list)
    kwargs: Dict[str, Any] = {}

    if "deployment_mode" in document:
        kwargs["deployment_mode"] = str(document["deployment_mode"])
    if "nodes" in document:
        kwargs["nodes"] = _expect(document, "nodes", int)
    if "seed" in document:
        kwargs["seed"] = _expect(document, "seed", int)
    if "rollback" in document:
        rollback = _expect(document, "rollback", dict)
        unknown = set(rollback) - {"probability", "enabled"}
        if unknown:
            raise SpecValidationError(f"'rollback' has unknown keys: {', '.join(sorted(unknown))}")
        policy = RollbackPolicy()
        if "probability" in rollback:
            policy = replace(policy, probability=float(_expect(rollback, "probability", int, float)))
        if "enabled" in rollback:
            policy = replace(policy, enabled=_expect(rollback, "enabled", bool))
        kwargs["rollback"] = policy
    if "hook_probability" in document:
        kwargs["hook_policy"] = HookPolicy(float(_expect(document, "hook_probability", int, float)))
    if "tenant_version" in document:
        kwargs["tenant_version"] = str(document["tenant_version"])
    if "tenant_name" in document:
        kwargs["tenant_name"] = str(_expect(document, "tenant_name", str))

    current = document.get("current")

    return UpgradeSpec.create(
        predecessors=[str(v) for v in predecessors],
        num_upgrades=_expect(document, "num_upgrades", int),
        current=None if current is None else str(current),
        hooks=_load_hooks(document),
        **kwargs,
    )


def load_spec(path: str | Path) -> UpgradeSpec:
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise SpecValidationError(f"cannot read spec file '{path}': {e.strerror}") from e
    return parse_spec(text)
