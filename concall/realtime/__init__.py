from .hub import BroadcastHub, HubStats, ObserverConnection

__all__ = ["BroadcastHub", "HubStats", "ObserverConnection"]
