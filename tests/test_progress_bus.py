"""
Tests for the progress bus.
"""

from agent_office.memory.progress_bus import ProgressBus
from agent_office.models import ProgressStatus, WorkflowProgress


def event(workflow_id="wf-1", step_id="A", progress=0):
    return WorkflowProgress(
        workflow_id=workflow_id,
        step_id=step_id,
        agent_id="agent",
        status=ProgressStatus.running,
        progress=progress,
    )


class TestProgressBus:
    """Subscription, filtering and delivery order."""

    def test_delivers_in_emission_order(self):
        bus = ProgressBus()
        seen = []
        bus.subscribe(lambda e: seen.append(e.step_id))

        for step in ("A", "B", "C"):
            bus.publish(event(step_id=step))

        assert seen == ["A", "B", "C"]

    def test_disposer_unsubscribes(self):
        bus = ProgressBus()
        seen = []
        dispose = bus.subscribe(seen.append)

        bus.publish(event())
        dispose()
        dispose()  # second call is a no-op
        bus.publish(event())

        assert len(seen) == 1
        assert bus.subscriber_count == 0

    def test_workflow_filter(self):
        bus = ProgressBus()
        mine, everything = [], []
        bus.subscribe(mine.append, workflow_id="wf-1")
        bus.subscribe(everything.append)

        bus.publish(event(workflow_id="wf-1"))
        bus.publish(event(workflow_id="wf-2"))

        assert [e.workflow_id for e in mine] == ["wf-1"]
        assert len(everything) == 2

    def test_failing_observer_does_not_block_others(self):
        bus = ProgressBus()
        seen = []

        def broken(_):
            raise RuntimeError("observer bug")

        bus.subscribe(broken)
        bus.subscribe(seen.append)

        bus.publish(event())

        assert len(seen) == 1

    def test_observer_may_dispose_itself_during_delivery(self):
        bus = ProgressBus()
        seen = []
        holder = {}

        def once(e):
            seen.append(e)
            holder["dispose"]()

        holder["dispose"] = bus.subscribe(once)
        bus.publish(event())
        bus.publish(event())

        assert len(seen) == 1
