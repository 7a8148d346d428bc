from module_2_signal_guidance.core.models import MonitorState
from module_2_signal_guidance.core.state_store import StateStore


def test_reconcile_reports_added_removed_retained() -> None:
    store = StateStore()

    first = store.reconcile([7, 9])
    assert first.added == (7, 9)
    assert first.changed

    second = store.reconcile([9, 12, 12])
    assert second.added == (12,)
    assert second.removed == (7,)
    assert second.retained == (9,)
    assert store.lanes() == [9, 12]

    assert not store.reconcile([12, 9]).changed


def test_update_swaps_status_and_notifies_on_change() -> None:
    store = StateStore()
    seen = []
    store.add_listener(seen.append)

    before = store.status
    store.update(monitor_state=MonitorState.MONITORING)
    store.update(monitor_state=MonitorState.MONITORING)

    assert before.monitor_state == MonitorState.IDLE
    assert store.status.monitor_state == MonitorState.MONITORING
    assert len(seen) == 1
    assert store.version == 1


def test_reset_keeps_intersection() -> None:
    store = StateStore()
    store.update(intersection_id=27482, in_lane=True)
    store.reconcile([7])

    store.reset()

    assert store.status.intersection_id == 27482
    assert store.status.in_lane is False
    assert store.lanes() == []
