from worldstate.events.bus import ChangeBus, ChangeEvent, ChangeType

__all__ = ["ChangeBus", "ChangeEvent", "ChangeType"]
