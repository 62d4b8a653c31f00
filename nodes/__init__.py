"""
Nodes module: the remote light-node protocol.

Everything that speaks to the remote service lives here.  Sessions are
built on top of :class:`ResilientRequestClient` and drive one wallet
through registration, start/stop, point claims and health probes.

Submodules:
    client: ``ResilientRequestClient`` and the ``RequestOutcome`` result type.
    session: ``NodeLifecycleSession`` state machine, ``NodeState``,
        ``PointsSnapshot``.
"""
