"""
RoomSync - real-time synchronization engine for a virtual meeting room.

This package negotiates a media session with a selective forwarding unit,
manages the lifecycle of inbound participant tracks, keeps a 2-D avatar of
every participant in sync over a peer data channel, and derives per-peer
"talking" activation from avatar proximity.
"""
