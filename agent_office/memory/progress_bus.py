"""Progress bus: fan-out of workflow progress events to observers."""

import logging
from typing import Callable, List, Optional, Tuple

from ..models import WorkflowProgress


logger = logging.getLogger(__name__)

ProgressObserver = Callable[[WorkflowProgress], None]


class ProgressBus:
    """
    Synchronous publish/subscribe channel for WorkflowProgress events.

    Delivery order equals emission order. Observers are called inline and
    must not block; an observer that raises is logged and skipped so it
    cannot stall the publisher.
    """

    def __init__(self):
        self._subscribers: List[Tuple[Optional[str], ProgressObserver]] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        observer: ProgressObserver,
        workflow_id: Optional[str] = None
    ) -> Callable[[], None]:
        """
        Register an observer.

        Args:
            observer: Called with every matching event
            workflow_id: Only deliver events of this workflow (None = all)

        Returns:
            Disposer that unregisters the observer; safe to call twice
        """
        entry = (workflow_id, observer)
        self._subscribers.append(entry)

        def dispose() -> None:
            try:
                self._subscribers.remove(entry)
            except ValueError:
                pass  # Already disposed

        return dispose

    def publish(self, progress: WorkflowProgress) -> None:
        """
        Deliver an event to every matching observer.

        Args:
            progress: The event to publish
        """
        # Snapshot so observers may dispose themselves during delivery
        for workflow_id, observer in list(self._subscribers):
            if workflow_id is not None and workflow_id != progress.workflow_id:
                continue
            try:
                observer(progress)
            except Exception:
                logger.exception(
                    f"Progress observer failed on {progress.workflow_id}/{progress.step_id}"
                )
