from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Iterator, Optional, Sequence, Tuple

from mixedversion.hooks import HookCategory
from mixedversion.stage import StageLabel, Track
from mixedversion.version import Version


def format_nodes(nodes: Sequence[int]) -> str:
    """
    Compact node list, e.g. `:1-4` for a contiguous range or `:1,3` otherwise.
    """
    ordered = sorted(nodes)
    if len(ordered) > 1 and ordered == list(range(ordered[0], ordered[-1] + 1)):
        return f":{ordered[0]}-{ordered[-1]}"
    return ":" + ",".join(str(n) for n in ordered)


def format_delay(delay: timedelta) -> str:
    ms = int(delay / timedelta(milliseconds=1))
    if ms and ms % 1000 == 0:
        return f"{ms // 1000}s"
    return f"{ms}ms"


def track_name(track: Track) -> str:
    return "system tenant" if track is Track.SYSTEM else "tenant"


@dataclass(frozen=True)
class Step:
    """
    A single action of a plan. Steps are values: the executor decides how to
    perform them, the planner only decides their order.
    """

    stage: StageLabel

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class InstallFixtures(Step):
    version: Version

    def describe(self) -> str:
        return f'install fixtures for version "{self.version}"'


@dataclass(frozen=True)
class StartCluster(Step):
    version: Version
    nodes: Tuple[int, ...]

    def describe(self) -> str:
        return f'start cluster at version "{self.version}" on nodes {format_nodes(self.nodes)}'


@dataclass(frozen=True)
class StartTenant(Step):
    name: str
    version: Version
    nodes: Tuple[int, ...]

    def describe(self) -> str:
        nodes = format_nodes(self.nodes)
        return f"start separate process tenant {self.name} on nodes {nodes} with binary version {self.version}"


@dataclass(frozen=True)
class RestartNode(Step):
    track: Track
    node: int
    version: Version

    def describe(self) -> str:
        if self.track is Track.TENANT:
            return f"restart tenant server on node {self.node} with binary version {self.version}"
        return f"restart node {self.node} with binary version {self.version}"


@dataclass(frozen=True)
class WaitForAcknowledgment(Step):
    track: Track
    version: Version
    nodes: Tuple[int, ...]

    def describe(self) -> str:
        return (
            f"wait for all nodes ({format_nodes(self.nodes)}) to acknowledge "
            f"cluster version '{self.version.series}' on {track_name(self.track)}"
        )


@dataclass(frozen=True)
class SetClusterSetting(Step):
    track: Track
    name: str
    value: str

    def describe(self) -> str:
        return f"set cluster setting `{self.name}` to '{self.value}' on {track_name(self.track)}"


@dataclass(frozen=True)
class RunHook(Step):
    hook: str
    category: HookCategory
    delay: Optional[timedelta] = None
    background: bool = False

    def describe(self) -> str:
        result = f'run "{self.hook}"'
        if self.background:
            result += " in the background"
        if self.delay:
            result += f" after {format_delay(self.delay)} delay"
        return result


@dataclass(frozen=True)
class PreventAutoUpgrade(Step):
    track: Track

    def describe(self) -> str:
        return f"prevent auto-upgrades on {track_name(self.track)} by setting `preserve_downgrade_option`"


@dataclass(frozen=True)
class AllowAutoUpgrade(Step):
    track: Track

    def describe(self) -> str:
        return f"allow upgrade to happen on {track_name(self.track)} by resetting `preserve_downgrade_option`"


@dataclass(frozen=True)
class Finalize(Step):
    track: Track
    version: Version

    def describe(self) -> str:
        return f"finalize upgrade on {track_name(self.track)} by setting `version` to '{self.version.series}'"


@dataclass(frozen=True)
class ConcurrencyGroup(Step):
    """
    Children may be started together by the executor, all of them finish
    before the step following the group starts.
    """

    children: Tuple[Step, ...]

    def describe(self) -> str:
        return "run following steps concurrently"


def flatten(steps: Iterable[Step]) -> Iterator[Step]:
    """
    Leaf steps in plan order (depth first), which is also the order of their
    sequence numbers in a rendered plan.
    """
    for step in steps:
        if isinstance(step, ConcurrencyGroup):
            yield from flatten(step.children)
        else:
            yield step
