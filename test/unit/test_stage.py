from mixedversion import Phase, StageLabel, Track
from mixedversion.stage import StageTracker


def test_stage_label():
    assert str(StageLabel(Phase.INIT)) == "system:init"
    assert str(StageLabel(Phase.UPGRADING_TENANT, Phase.LAST_UPGRADE)) == "system:upgrading-tenant;tenant:last-upgrade"


def test_upgrade_rounds():
    rounds = [p for p in Phase if p.is_upgrade_round]
    assert rounds == [Phase.TEMPORARY_UPGRADE, Phase.ROLLBACK_UPGRADE, Phase.LAST_UPGRADE]


def test_tracker_moves_only_when_told():
    tracker = StageTracker(Track.SYSTEM, Phase.INIT)
    assert tracker.is_started
    assert tracker.history == [(0, Phase.INIT)]

    tracker.enter(Phase.LAST_UPGRADE, at_step=6)
    tracker.enter(Phase.LAST_UPGRADE, at_step=7)
    tracker.enter(Phase.FINALIZING, at_step=12)

    assert tracker.phase is Phase.FINALIZING
    assert tracker.history == [(0, Phase.INIT), (6, Phase.LAST_UPGRADE), (12, Phase.FINALIZING)]


def test_tracker_of_missing_track():
    tracker = StageTracker(Track.TENANT)
    assert not tracker.is_started
    assert tracker.phase is None
    assert tracker.history == []

    tracker.enter(Phase.INIT, at_step=4)
    assert tracker.is_started
