"""Real-time infrastructure — change fan-out + request multiplexing.

Learn: Events flow through two paths on the same socket:
1. Change source → Broadcaster → every open Session (server push)
2. Client → SessionHandler → data backend → same Session (request/response)

The ConnectionRegistry is the only state both paths share.
"""

from rowcast.realtime.broadcaster import Broadcaster
from rowcast.realtime.registry import ConnectionRegistry
from rowcast.realtime.relay import Relay
from rowcast.realtime.session import Session, SessionState

__all__ = ["Broadcaster", "ConnectionRegistry", "Relay", "Session", "SessionState"]
