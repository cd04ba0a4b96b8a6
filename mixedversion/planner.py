from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple

from mixedversion.config import UpgradeSpec
from mixedversion.errors import SpecValidationError
from mixedversion.hooks import Hook, HookCategory
from mixedversion.log import log
from mixedversion.perturb import HookSchedule, RandomPerturber, generate_seed
from mixedversion.plan import Plan
from mixedversion.stage import Phase, StageLabel, StageTracker, Track
from mixedversion.steps import (
    AllowAutoUpgrade,
    ConcurrencyGroup,
    Finalize,
    InstallFixtures,
    PreventAutoUpgrade,
    RestartNode,
    RunHook,
    SetClusterSetting,
    StartCluster,
    StartTenant,
    Step,
    WaitForAcknowledgment,
    flatten,
)
from mixedversion.version import Transition, Version

TENANT_SETTINGS = [
    ("kv.tenant_rate_limiter.rate_limit", "-1"),
    ("server.secondary_tenants.authorization.mode", "allow-all"),
]
"""
Cluster settings applied to a separate-process tenant right after it is
started: lift the rate limiter and let it use every capability, so that
tests are not throttled or rejected because of the tenant itself.
"""


class Planner:
    """
    Builds the plan of a mixed-version test (the "step builder").

    The plan of every transition looks like this:
    1. Prevent auto-upgrades, so that nodes running the new binary do not
       finalize the upgrade on their own.
    2. Restart every node with the new binary, in a random order, running
       in-mixed-version hooks between restarts.
    3. Optionally, do a rollback excursion first: restart every node with
       the new binary, then with the old binary again, and only then with
       the new binary for good.
    4. Allow auto-upgrades and wait for every node to acknowledge the new
       cluster version, then run after-upgrade-finalized hooks.

    In separate-process deployments the tenant goes through 1-4 on its own
    after the system tenant finished.

    A planner builds exactly one plan. Every random decision comes from
    `perturber` and is requested in a fixed order, so equal specs and seeds
    produce equal plans.
    """

    spec: UpgradeSpec
    perturber: RandomPerturber
    trackers: Dict[Track, StageTracker]
    nodes: Tuple[int, ...]

    def __init__(self, spec: UpgradeSpec, perturber: Optional[RandomPerturber] = None) -> None:
        if perturber is None:
            seed = spec.seed if spec.seed is not None else generate_seed()
            perturber = RandomPerturber(seed, spec.rollback, spec.hook_policy)

        self.spec = spec
        self.perturber = perturber
        self.nodes = tuple(range(1, spec.nodes + 1))
        self.trackers = {
            Track.SYSTEM: StageTracker(Track.SYSTEM, Phase.INIT),
            Track.TENANT: StageTracker(Track.TENANT),
        }
        self.steps: List[Step] = []
        self.emitted = 0
        self.built = False

    def __repr__(self) -> str:
        return f"Planner(seed={self.perturber.seed}, mode={self.spec.deployment_mode}, nodes={len(self.nodes)})"

    @property
    def tenant_started(self) -> bool:
        return self.trackers[Track.TENANT].is_started

    def plan(self) -> Plan:
        assert not self.built, "a planner builds exactly one plan"
        self.built = True

        transitions = self._validate()

        log.info(
            f"planning {len(transitions)} upgrade(s) [{' → '.join(str(v) for v in self._path(transitions))}], "
            f"mode={self.spec.deployment_mode}, nodes={len(self.nodes)}, seed={self.perturber.seed}"
        )

        # STEP: bring up the cluster at the oldest version of the path.

        self._initial(transitions[0].from_version)

        # STEP: walk the upgrade path.

        for transition in transitions:
            self._transition(transition, total=len(transitions))

        plan = Plan(
            seed=self.perturber.seed,
            deployment_mode=self.spec.deployment_mode,
            transitions=tuple(transitions),
            nodes=self.nodes,
            steps=tuple(self.steps),
        )
        log.info(f"plan ready: {len(plan)} steps")
        return plan

    @staticmethod
    def _path(transitions: Sequence[Transition]) -> List[Version]:
        return [transitions[0].from_version] + [t.to_version for t in transitions]

    def _validate(self) -> List[Transition]:
        if self.spec.nodes < 1:
            error = f"cluster must have at least one node, got {self.spec.nodes}"
            hint = "set `nodes` to a positive number"
            raise SpecValidationError(f"{error}, {hint}")

        self.spec.hooks.validate()
        transitions = self.spec.transitions()

        tenant_version = self.spec.tenant_version
        if self.spec.is_separate_process and tenant_version is not None:
            if not self._reached(tenant_version, transitions[-1].to_version):
                error = f"tenant version {tenant_version} is never reached by the upgrade path"
                hint = f"the path ends at {transitions[-1].to_version}"
                raise SpecValidationError(f"{error}, {hint}")

        return transitions

    def _tenant_due(self, version: Version) -> bool:
        """Tenant is started once the system tenant runs the tenant version."""
        if not self.spec.is_separate_process or self.tenant_started:
            return False
        tenant_version = self.spec.tenant_version
        return tenant_version is None or self._reached(tenant_version, version)

    @staticmethod
    def _reached(target: Version, version: Version) -> bool:
        """
        Whether a track running `version` has reached the released `target`.
        A named current version is compared by its release, an unnamed one
        is newer than any release.
        """
        if version.release is None:
            return True
        assert target.release is not None
        return target.release <= version.release

    # Stage bookkeeping.

    def _label(self) -> StageLabel:
        system, tenant = self.trackers[Track.SYSTEM].phase, self.trackers[Track.TENANT].phase
        assert system is not None
        return StageLabel(system, tenant)

    def _enter(self, track: Track, phase: Phase) -> None:
        self.trackers[track].enter(phase, at_step=self.emitted + 1)

    def _emit(self, step: Step) -> None:
        self.steps.append(step)
        for leaf in flatten([step]):
            self.emitted += 1
            log.debug(f"step {self.emitted}: {leaf.describe()} [stage={leaf.stage}]")

    def _concurrently(self, steps: Sequence[Step]) -> Optional[Step]:
        match steps:
            case []:
                return None
            case [step]:
                return step
            case _:
                return ConcurrencyGroup(stage=steps[0].stage, children=tuple(steps))

    # Plan sections.

    def _initial(self, version: Version) -> None:
        self._enter(Track.SYSTEM, Phase.INIT)
        self._emit(InstallFixtures(stage=self._label(), version=version))
        self._emit(StartCluster(stage=self._label(), version=version, nodes=self.nodes))
        self._wait_for_acknowledgment(Track.SYSTEM, version)

        if self._tenant_due(version):
            self._setup_tenant(version)

        self._startup_hooks(version)

    def _startup_hooks(self, version: Version) -> None:
        registry = self.spec.hooks
        group: List[Step] = []

        startup = registry.eligible(HookCategory.ON_STARTUP, version, Track.SYSTEM)
        if startup:
            self._enter(Track.SYSTEM, Phase.ON_STARTUP)
            for hook in startup:
                group.append(RunHook(stage=self._label(), hook=hook.name, category=hook.category))

        # NOTE: background workloads are never waited for,
        # they keep running until the very end of the test.
        workloads = registry.eligible(HookCategory.BACKGROUND, version, Track.SYSTEM)
        if workloads:
            self._enter(Track.SYSTEM, Phase.BACKGROUND)
            for hook in workloads:
                group.append(RunHook(stage=self._label(), hook=hook.name, category=hook.category, background=True))

        step = self._concurrently(group)
        if step is not None:
            self._emit(step)

    def _setup_tenant(self, version: Version) -> None:
        log.info(f"starting separate process tenant {self.spec.tenant_name} at {version}")

        self._enter(Track.SYSTEM, Phase.TENANT_SETUP)
        self._enter(Track.TENANT, Phase.INIT)

        self._emit(StartTenant(stage=self._label(), name=self.spec.tenant_name, version=version, nodes=self.nodes))
        for name, value in TENANT_SETTINGS:
            self._emit(SetClusterSetting(stage=self._label(), track=Track.TENANT, name=name, value=value))
        self._wait_for_acknowledgment(Track.TENANT, version)

    def _transition(self, transition: Transition, total: int) -> None:
        # NOTE: decided once per transition, every track pass of
        # the transition goes through the same excursion.
        rollback = self.perturber.inject_rollback(transition)

        log.info(f"transition {transition.index + 1}/{total}: {transition}, rollback excursion? {rollback}")

        self._upgrade(transition, Track.SYSTEM, rollback)

        if not self.spec.is_separate_process:
            return

        if self.tenant_started:
            self._enter(Track.SYSTEM, Phase.UPGRADING_TENANT)
            self._upgrade(transition, Track.TENANT, rollback)
        elif self._tenant_due(transition.to_version):
            self._setup_tenant(transition.to_version)

    def _upgrade(self, transition: Transition, track: Track, rollback: bool) -> None:
        """
        One track pass of a transition. The same routine serves both tracks,
        so the system tenant and a separate-process tenant always follow the
        same protocol.
        """
        rounds = [(Phase.LAST_UPGRADE, transition.to_version)]
        if rollback:
            rounds = [
                (Phase.TEMPORARY_UPGRADE, transition.to_version),
                (Phase.ROLLBACK_UPGRADE, transition.from_version),
                (Phase.LAST_UPGRADE, transition.to_version),
            ]

        self._enter(track, rounds[0][0])
        self._emit(PreventAutoUpgrade(stage=self._label(), track=track))

        already_ran: Set[str] = set()
        for number, (phase, version) in enumerate(rounds, start=1):
            self._enter(track, phase)
            # NOTE: the rollback round runs `from`, hooks must apply to it.
            hooks = self.spec.hooks.eligible(HookCategory.IN_MIXED_VERSION, version, track)
            final_round = number == len(rounds)
            already_ran |= self._restart_round(track, version, hooks, final_round, already_ran)

        self._enter(track, Phase.RUNNING_UPGRADE_MIGRATIONS)
        self._emit(AllowAutoUpgrade(stage=self._label(), track=track))
        if track is Track.TENANT:
            # NOTE: tenants do not finalize on their own once
            # auto-upgrades are allowed, it has to be requested.
            self._emit(Finalize(stage=self._label(), track=track, version=transition.to_version))

        self._enter(track, Phase.FINALIZING)
        self._wait_for_acknowledgment(track, transition.to_version, after_upgrade=True)

        self._enter(track, Phase.AFTER_UPGRADE_FINISHED)
        for hook in self.spec.hooks.eligible(HookCategory.AFTER_UPGRADE_FINALIZED, transition.to_version, track):
            self._emit(RunHook(stage=self._label(), hook=hook.name, category=hook.category))

    def _restart_round(
        self,
        track: Track,
        version: Version,
        hooks: Sequence[Hook],
        final_round: bool,
        already_ran: Set[str],
    ) -> Set[str]:
        order = self.perturber.node_order(self.nodes)
        schedule: HookSchedule = {}
        if hooks:
            schedule = self.perturber.schedule_hooks(hooks, len(order), final_round, already_ran)

        log.debug(f"{track} track: restarting nodes {order} with {version}, hooks after restarts: {sorted(schedule)}")

        for position, node in enumerate(order, start=1):
            self._emit(RestartNode(stage=self._label(), track=track, node=node, version=version))

            runs = [
                RunHook(stage=self._label(), hook=hook.name, category=hook.category, delay=delay)
                for hook, delay in schedule.get(position, [])
            ]
            step = self._concurrently(runs)
            if step is not None:
                self._emit(step)

        return {hook.name for runs in schedule.values() for hook, _ in runs}

    def _wait_for_acknowledgment(self, track: Track, version: Version, after_upgrade: bool = False) -> None:
        if after_upgrade:
            self._assert_ready_for_acknowledgment(track, version)
        self._emit(WaitForAcknowledgment(stage=self._label(), track=track, version=version, nodes=self.nodes))

    def _assert_ready_for_acknowledgment(self, track: Track, version: Version) -> None:
        """
        Acknowledgment can only be awaited after every node of the track was
        restarted with `version` in the final round and auto-upgrades were
        allowed again. Anything else is a bug in the planner.
        """
        emitted = list(flatten(self.steps))

        prevent_at = max(
            (i for i, s in enumerate(emitted) if isinstance(s, PreventAutoUpgrade) and s.track is track),
            default=None,
        )
        error = f"waiting for {track} acknowledgment of {version} without preventing auto-upgrades"
        assert prevent_at is not None, error

        current_pass = emitted[prevent_at:]
        restarts = [i for i, s in enumerate(current_pass) if isinstance(s, RestartNode) and s.track is track]
        assert len(restarts) >= len(self.nodes), f"waiting for {track} acknowledgment of {version} before restarts"

        final_round: List[RestartNode] = [current_pass[i] for i in restarts[-len(self.nodes) :]]  # type: ignore[misc]
        assert sorted(s.node for s in final_round) == list(self.nodes), "final round must restart every node once"
        assert all(s.version == version for s in final_round), "final round must restart nodes with the new version"

        allow_at = max(
            (i for i, s in enumerate(current_pass) if isinstance(s, AllowAutoUpgrade) and s.track is track),
            default=None,
        )
        assert allow_at is not None and allow_at > restarts[-1], "auto-upgrades must be allowed after the final round"


def build_plan(spec: UpgradeSpec, perturber: Optional[RandomPerturber] = None) -> Plan:
    return Planner(spec, perturber).plan()
