"""
Plans of mixed-version (rolling upgrade) tests of a distributed database.

    registry = HookRegistry()
    registry.in_mixed_version("h1")

    spec = UpgradeSpec.create(["22.2.3", "23.1.4"], num_upgrades=2, hooks=registry, seed=42)
    print(render(build_plan(spec)))
"""

from mixedversion.config import DeploymentMode, UpgradeSpec, load_spec, parse_spec
from mixedversion.errors import LifecycleError, MixedVersionError, SpecValidationError, UnknownHookError
from mixedversion.hooks import HookCategory, HookRegistry
from mixedversion.perturb import HookPolicy, RandomPerturber, RollbackPolicy
from mixedversion.plan import Plan
from mixedversion.planner import Planner, build_plan
from mixedversion.render import render
from mixedversion.stage import Phase, StageLabel, Track
from mixedversion.version import Transition, Version

__all__ = [
    "DeploymentMode",
    "HookCategory",
    "HookPolicy",
    "HookRegistry",
    "LifecycleError",
    "MixedVersionError",
    "Phase",
    "Plan",
    "Planner",
    "RandomPerturber",
    "RollbackPolicy",
    "SpecValidationError",
    "StageLabel",
    "Track",
    "Transition",
    "UnknownHookError",
    "UpgradeSpec",
    "Version",
    "build_plan",
    "load_spec",
    "parse_spec",
    "render",
]
