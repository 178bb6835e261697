from .progress_bus import ProgressBus, ProgressObserver


__all__ = ["ProgressBus", "ProgressObserver"]
