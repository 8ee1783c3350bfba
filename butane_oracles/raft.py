"""Leader election among oracle nodes, driven by messages, ticks and commands."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

NodeId = str

_IDLE_WAIT = 10.0


@dataclass(frozen=True)
class Connect:
    """A peer has connected."""


@dataclass(frozen=True)
class Disconnect:
    """A peer has disconnected."""


@dataclass(frozen=True)
class RequestVote:
    term: int


@dataclass(frozen=True)
class RequestVoteResponse:
    term: int
    vote: bool


@dataclass(frozen=True)
class Heartbeat:
    term: int


RaftMessage = Connect | Disconnect | RequestVote | RequestVoteResponse | Heartbeat
Outgoing = list[tuple[NodeId, RaftMessage]]


class LeaderKind(Enum):
    MYSELF = "myself"
    OTHER = "other"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RaftLeader:
    """Who this node believes the leader to be."""

    kind: LeaderKind
    node_id: NodeId | None = None

    @classmethod
    def myself(cls) -> RaftLeader:
        return cls(LeaderKind.MYSELF)

    @classmethod
    def other(cls, node_id: NodeId) -> RaftLeader:
        return cls(LeaderKind.OTHER, node_id)

    @classmethod
    def unknown(cls) -> RaftLeader:
        return cls(LeaderKind.UNKNOWN)


@dataclass(frozen=True)
class Follower:
    leader: NodeId | None = None
    voted_for: NodeId | None = None


@dataclass(frozen=True)
class Candidate:
    votes: frozenset = field(default_factory=frozenset)


@dataclass(frozen=True)
class Leader:
    abdicating: bool = False


RaftStatus = Follower | Candidate | Leader


@dataclass(frozen=True)
class Abdicate:
    """Step down as leader by no longer sending heartbeats."""


@dataclass(frozen=True)
class ForceElection:
    """Start an election for the given term."""

    term: int


RaftCommand = Abdicate | ForceElection


def _new_jitter() -> float:
    return random.randrange(50, 100) / 1000.0


class RaftState:
    """The election state machine; times are in seconds on a monotonic clock."""

    def __init__(
        self,
        node_id: NodeId,
        start_time: float,
        quorum: int,
        heartbeat_freq: float,
        timeout_freq: float,
        on_leader_change: Callable[[RaftLeader], None] | None = None,
    ) -> None:
        self.node_id = node_id
        self.quorum = quorum
        self.peers: set[NodeId] = set()
        self._warned_about_quorum = False
        self.last_event = start_time
        self.heartbeat_freq = heartbeat_freq
        self.timeout_freq = timeout_freq
        self.jitter = _new_jitter()
        self.status: RaftStatus = Follower()
        self.term = 0
        self._missing_payloads = 0
        self._on_leader_change = on_leader_change
        self._leader = RaftLeader.unknown()
        self._clear_status()

    def _sorted_peers(self) -> list[NodeId]:
        return sorted(self.peers)

    def _can_reach_quorum(self) -> bool:
        return len(self.peers) + 1 >= self.quorum

    def _is_active_leader(self) -> bool:
        return isinstance(self.status, Leader) and not self.status.abdicating

    def next_event(self, now: float) -> float:
        """When this node next needs to act on its own."""
        next_event = now + _IDLE_WAIT
        if self._can_reach_quorum():
            next_event = min(next_event, self.last_event + self._time_until_next_election())
        if self._is_active_leader():
            next_event = min(next_event, self.last_event + self.heartbeat_freq)
        return max(next_event, now)

    def _leader_id(self) -> NodeId | None:
        match self.status:
            case Leader():
                return self.node_id
            case Follower(leader=leader) if leader is not None:
                return leader
        return None

    def abdicate(self) -> Outgoing:
        if isinstance(self.status, Leader):
            self.status = Leader(abdicating=True)
        return []

    def set_missing_payloads(self, missing_payloads: int) -> Outgoing:
        self._missing_payloads = missing_payloads
        return []

    def handle_command(self, command: RaftCommand, timestamp: float) -> Outgoing:
        match command:
            case Abdicate():
                return self.abdicate()
            case ForceElection(term=term):
                return self.run_election(term, timestamp)
        raise TypeError(f"unknown raft command {command!r}")

    def receive(self, timestamp: float, sender: NodeId, message: RaftMessage) -> Outgoing:
        match message:
            case Connect():
                return self._on_connect(sender)
            case Disconnect():
                return self._on_disconnect(sender)
            case Heartbeat(term=term):
                return self._on_heartbeat(timestamp, sender, term)
            case RequestVote(term=term):
                return self._on_request_vote(timestamp, sender, term)
            case RequestVoteResponse(term=term, vote=vote):
                return self._on_vote_response(sender, term, vote)
        raise TypeError(f"unknown raft message {message!r}")

    def _on_connect(self, sender: NodeId) -> Outgoing:
        logger.info("New peer %s", sender)
        self.peers.add(sender)
        if self._is_active_leader():
            # Let them know right away that we're the leader
            return [(sender, Heartbeat(self.term))]
        return []

    def _on_disconnect(self, sender: NodeId) -> Outgoing:
        logger.info("Peer disconnected %s", sender)
        self.peers.discard(sender)
        if len(self.peers) < self.quorum - 1:
            logger.info("Too few peers connected, raft status unknown")
            self._clear_status()
        elif self._leader_id() == sender:
            logger.info("Current leader has disconnected")
            self._clear_status()
        return []

    def _on_heartbeat(self, timestamp: float, sender: NodeId, term: int) -> Outgoing:
        current_leader = self._leader_id()
        if term >= self.term:
            self.term = term
            self._set_status(Follower(leader=sender))
            if sender != current_leader:
                logger.info("New leader %s (term %d)", sender, term)
            self._warned_about_quorum = False
            self.last_event = timestamp
        return []

    def _on_request_vote(self, timestamp: float, sender: NodeId, requested_term: int) -> Outgoing:
        logger.debug("Vote requested by %s for term %d", sender, requested_term)
        is_new_term = requested_term > self.term
        if is_new_term:
            self.term = requested_term
            vote, reason = True, "First candidate of new term"
        else:
            match self.status:
                case Leader():
                    vote, reason = False, "Already elected self"
                case Follower(voted_for=candidate) if candidate is not None:
                    if candidate == sender:
                        vote, reason = True, "Already voted for this candidate"
                    else:
                        vote, reason = False, "Already voted for another candidate"
                case Follower():
                    vote, reason = True, "First candidate of term"
                case _:
                    vote, reason = False, "Already voted for self"

        logger.debug(
            "Casting vote %s for %s's election (term %d): %s",
            vote,
            sender,
            requested_term,
            reason,
        )
        if vote:
            leader = None
            old_voted_for = None
            if isinstance(self.status, Follower):
                old_voted_for = self.status.voted_for
                if not is_new_term:
                    leader = self.status.leader
            if old_voted_for != sender:
                # Newly voting for someone resets the election timeout
                self.last_event = timestamp
            self._set_status(Follower(leader=leader, voted_for=sender))
        return [(sender, RequestVoteResponse(self.term, vote))]

    def _on_vote_response(self, sender: NodeId, term: int, vote: bool) -> Outgoing:
        if not isinstance(self.status, Candidate):
            if term >= self.term:
                logger.warning(
                    "Unexpected vote response from %s (term %d, vote %s)", sender, term, vote
                )
            return []
        if term < self.term:
            return []
        if term > self.term:
            logger.debug("Updating term %d to match peer's newer term %d", self.term, term)
            self.term = term
        prev_votes = self.status.votes
        if not vote:
            logger.debug("Vote rejected (votes %d, quorum %d)", len(prev_votes), self.quorum)
            return []

        new_votes = prev_votes | {sender}
        logger.debug("Vote received (votes %d, quorum %d)", len(new_votes), self.quorum)
        self._set_status(Candidate(votes=frozenset(new_votes)))
        if len(new_votes) < self.quorum:
            return []
        logger.info(
            "Election won (term %d, votes %d, quorum %d)", term, len(new_votes), self.quorum
        )
        self._set_status(Leader())
        # Heartbeat immediately to make the election stable
        return [(peer, Heartbeat(term)) for peer in self._sorted_peers()]

    def tick(self, timestamp: float) -> Outgoing:
        actual_timeout = self._time_until_next_election()
        elapsed = timestamp - self.last_event
        heartbeat_timeout = elapsed > self.heartbeat_freq
        election_timeout = elapsed > actual_timeout
        can_reach_quorum = self._can_reach_quorum()
        is_leader = isinstance(self.status, Leader)
        abdicating = is_leader and self.status.abdicating

        if election_timeout and not can_reach_quorum:
            if not self._warned_about_quorum:
                logger.warning(
                    "Timeout reached after %.3fs, but can't reach quorum "
                    "(term %d, nodes %d, quorum %d)",
                    actual_timeout,
                    self.term,
                    len(self.peers) + 1,
                    self.quorum,
                )
                self._warned_about_quorum = True
            return []
        if election_timeout and not abdicating:
            logger.info(
                "Timeout reached after %.3fs, starting a new election (term %d)",
                actual_timeout,
                self.term + 1,
            )
            # New jitter avoids aggressive election cycles
            self.jitter = _new_jitter()
            return self.run_election(self.term + 1, timestamp)
        if is_leader and heartbeat_timeout and not abdicating:
            self._emit_has_leader(True, True)
            if not self.peers:
                return []
            logger.debug("Sending heartbeats as leader")
            self.last_event = timestamp
            return [(peer, Heartbeat(self.term)) for peer in self._sorted_peers()]
        return []

    def run_election(self, term: int, timestamp: float) -> Outgoing:
        if self.term >= term:
            logger.warning(
                "cannot force an election for a past term (requested %d, current %d)",
                term,
                self.term,
            )
            return []
        self._set_status(Candidate(votes=frozenset({self.node_id})))
        self.term = term
        self.last_event = timestamp
        return [(peer, RequestVote(self.term)) for peer in self._sorted_peers()]

    def _time_until_next_election(self) -> float:
        # Nodes that fail to produce payloads wait longer, so unhealthy nodes don't lead.
        return self.timeout_freq * (self._missing_payloads + 1) - self.jitter

    def _clear_status(self) -> None:
        self._set_status(Follower())

    def _set_status(self, status: RaftStatus) -> None:
        match status:
            case Leader():
                leader = RaftLeader.myself()
            case Follower(leader=node) if node is not None:
                leader = RaftLeader.other(node)
            case _:
                leader = RaftLeader.unknown()
        self._emit_has_leader(
            leader.kind is LeaderKind.MYSELF, leader.kind is not LeaderKind.UNKNOWN
        )
        self.status = status
        if leader != self._leader:
            self._leader = leader
            if self._on_leader_change is not None:
                self._on_leader_change(leader)

    @staticmethod
    def _emit_has_leader(is_leader: bool, has_leader: bool) -> None:
        logger.debug("leader metrics: has_leader=%d is_leader=%d", has_leader, is_leader)


class RaftClient:
    """Sends commands to a running raft state machine without blocking."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self._queue = queue

    def abdicate(self) -> None:
        try:
            self._queue.put_nowait(Abdicate())
        except asyncio.QueueFull as error:
            logger.warning("Could not abdicate raft leadership: %s", error or "queue full")

    def assume_leadership(self, term: int) -> None:
        try:
            self._queue.put_nowait(ForceElection(term))
        except asyncio.QueueFull as error:
            logger.warning("Could not force election: %s", error or "queue full")


def create_raft_client(maxsize: int = 1024) -> tuple[RaftClient, asyncio.Queue]:
    """A client and the command queue it feeds."""
    queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
    return RaftClient(queue), queue