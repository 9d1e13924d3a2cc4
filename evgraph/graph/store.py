"""
In-process evidence graph store with an optional append-only journal.

The store is the single source of truth for nodes, edges, anchors and
timestamps. Every mutation is a record appended to `graph.jsonl` (one
line per record, written in a single file operation) and then applied
in memory. Reopening a store replays the journal.

The store does not verify hash chains; that is the ledger's job. It
does enforce structural rules: unique ids, unique (source, sequence)
pairs, and edges whose endpoints exist and match the edge table.
"""

from __future__ import annotations

import json
import threading
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from ..errors import NotFoundError, ValidationError
from ..util import new_id, utc_now
from .edges import Edge, EdgeType
from .nodes import Clock, Event, Node, NodeKind, NodeRef, node_from_dict
from .records import MerkleAnchor, TsaTimestamp, VerificationStatus

JOURNAL_NAME = "graph.jsonl"


def _ref(item: Node | NodeRef) -> NodeRef:
    return item if isinstance(item, NodeRef) else item.ref


@dataclass
class WriteSet:
    """Nodes and edges committed together, or not at all."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def add_node(self, node: Node) -> Node:
        self.nodes.append(node)
        return node

    def add_edge(self, edge: Edge) -> Edge:
        self.edges.append(edge)
        return edge

    def link(
        self,
        edge_type: EdgeType,
        source: Node | NodeRef,
        target: Node | NodeRef,
        *,
        created_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Edge:
        edge = Edge(
            edge_id=new_id("EDGE"),
            edge_type=edge_type,
            source=_ref(source),
            target=_ref(target),
            created_at=created_at or utc_now(),
            metadata=metadata or {},
        )
        return self.add_edge(edge)

    def __bool__(self) -> bool:
        return bool(self.nodes or self.edges)

    def to_record(self) -> dict[str, Any]:
        return {
            "op": "commit",
            "nodes": [{"kind": n.kind.value, "data": n.to_dict()} for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


class GraphSnapshot:
    """
    Read-only, point-in-time copy of the graph.

    Queries evaluate against a snapshot so that concurrent ingestion
    cannot change the evidence set mid-evaluation.
    """

    def __init__(self, nodes: dict[NodeKind, dict[str, Node]], edges: Iterable[Edge]):
        self._nodes = nodes
        self._edges = sorted(edges, key=lambda e: e.edge_id)
        self._out: dict[NodeRef, list[Edge]] = defaultdict(list)
        self._in: dict[NodeRef, list[Edge]] = defaultdict(list)
        for edge in self._edges:
            self._out[edge.source].append(edge)
            self._in[edge.target].append(edge)

    def get(self, ref: NodeRef) -> Node | None:
        return self._nodes.get(ref.kind, {}).get(ref.node_id)

    def nodes_of(self, kind: NodeKind) -> list[Node]:
        bucket = self._nodes.get(kind, {})
        return [bucket[k] for k in sorted(bucket)]

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    def edges_from(self, ref: NodeRef, edge_type: EdgeType | None = None) -> list[Edge]:
        return [e for e in self._out.get(ref, []) if edge_type is None or e.edge_type == edge_type]

    def edges_to(self, ref: NodeRef, edge_type: EdgeType | None = None) -> list[Edge]:
        return [e for e in self._in.get(ref, []) if edge_type is None or e.edge_type == edge_type]

    def connected(self, source: NodeRef, edge_type: EdgeType, target: NodeRef) -> bool:
        return any(e.target == target for e in self.edges_from(source, edge_type))


class EvidenceStore:
    """
    Thread-safe graph store.

    A single internal lock guards the in-memory structures; it is held
    only for the duration of one store call.
    """

    def __init__(self, data_dir: Path | None = None):
        self.data_dir = data_dir
        self.journal_path = data_dir / JOURNAL_NAME if data_dir is not None else None
        self._lock = threading.RLock()
        self._nodes: dict[NodeKind, dict[str, Node]] = {kind: {} for kind in NodeKind}
        self._edges: dict[str, Edge] = {}
        self._out: dict[NodeRef, list[str]] = defaultdict(list)
        self._in: dict[NodeRef, list[str]] = defaultdict(list)
        self._streams: dict[str, dict[int, str]] = defaultdict(dict)
        self._anchors: dict[str, MerkleAnchor] = {}
        self._claims: dict[str, str] = {}
        self._timestamps: dict[str, TsaTimestamp] = {}

        if self.journal_path is not None and self.journal_path.exists():
            self._replay()

    # -------------------------------------------------------------------------
    # Journal
    # -------------------------------------------------------------------------

    def _write(self, record: dict[str, Any]) -> None:
        if self.journal_path is None:
            return
        self.journal_path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, sort_keys=True, separators=(",", ":")) + "\n"
        with self.journal_path.open("a", encoding="utf-8") as f:
            f.write(line)

    def iter_records(self) -> Iterator[dict[str, Any]]:
        if self.journal_path is None or not self.journal_path.exists():
            return
        with self.journal_path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def _replay(self) -> None:
        for record in self.iter_records():
            op = record.get("op")
            if op == "commit":
                nodes = [node_from_dict(n["kind"], n["data"]) for n in record.get("nodes", [])]
                edges = [Edge.from_dict(e) for e in record.get("edges", [])]
                self._apply(nodes, edges)
            elif op == "clock":
                clock = Clock.from_dict(record["clock"])
                self._apply([clock], [Edge.from_dict(e) for e in record.get("edges", [])])
            elif op == "claim":
                for event_id in record.get("event_ids", []):
                    self._claims[event_id] = record["claim_id"]
            elif op == "release":
                claim_id = record["claim_id"]
                for event_id in [e for e, c in self._claims.items() if c == claim_id]:
                    del self._claims[event_id]
            elif op == "anchor":
                anchor = MerkleAnchor.from_dict(record["anchor"])
                self._anchors[anchor.anchor_id] = anchor
            elif op == "timestamp":
                ts = TsaTimestamp.from_dict(record["timestamp"])
                self._timestamps[ts.timestamp_id] = ts
            else:
                raise ValueError(f"Unknown journal record op: {op!r}")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _exists(self, ref: NodeRef, pending: dict[NodeRef, Node]) -> bool:
        return ref in pending or ref.node_id in self._nodes[ref.kind]

    def _check_edges(self, edges: Iterable[Edge], pending: dict[NodeRef, Node]) -> None:
        for edge in edges:
            if edge.edge_id in self._edges:
                raise ValidationError(f"Duplicate edge id: {edge.edge_id}")
            for ref in (edge.source, edge.target):
                if not self._exists(ref, pending):
                    raise ValidationError(f"{edge.edge_type.value} references unknown node {ref}")

    def _apply(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        for node in nodes:
            self._nodes[node.kind][node.node_id] = node
            if isinstance(node, Event):
                self._streams[node.source_system][node.sequence_number] = node.event_id
        for edge in edges:
            self._edges[edge.edge_id] = edge
            self._out[edge.source].append(edge.edge_id)
            self._in[edge.target].append(edge.edge_id)

    def commit(self, write_set: WriteSet) -> None:
        """
        Commit a write set atomically.

        Raises:
            ValidationError: duplicate ids, a taken (source, sequence) pair,
                or an edge whose endpoints do not exist.
        """
        if not write_set:
            return
        with self._lock:
            pending: dict[NodeRef, Node] = {}
            for node in write_set.nodes:
                if node.ref in pending or node.node_id in self._nodes[node.kind]:
                    raise ValidationError(f"Duplicate node id: {node.ref}")
                if isinstance(node, Event):
                    taken = self._streams.get(node.source_system, {})
                    if node.sequence_number in taken or any(
                        isinstance(p, Event)
                        and p.source_system == node.source_system
                        and p.sequence_number == node.sequence_number
                        for p in pending.values()
                    ):
                        raise ValidationError(
                            f"Sequence {node.sequence_number} already used in stream {node.source_system!r}"
                        )
                pending[node.ref] = node
            self._check_edges(write_set.edges, pending)

            self._write(write_set.to_record())
            self._apply(write_set.nodes, write_set.edges)

    def append_event(self, event: Event) -> Event:
        self.commit(WriteSet(nodes=[event]))
        return event

    def create_node(self, node: Node) -> Node:
        self.commit(WriteSet(nodes=[node]))
        return node

    def create_edge(
        self,
        edge_type: EdgeType,
        source: Node | NodeRef,
        target: Node | NodeRef,
        *,
        metadata: dict[str, Any] | None = None,
    ) -> Edge:
        ws = WriteSet()
        edge = ws.link(edge_type, source, target, metadata=metadata)
        self.commit(ws)
        return edge

    def compare_and_swap_clock(
        self,
        updated: Clock,
        expected_version: int,
        *,
        edges: Iterable[Edge] = (),
    ) -> Clock | None:
        """
        Replace a clock if its stored version still equals `expected_version`.

        Returns the stored clock (with bumped version) on success, or None
        if another writer got there first.
        """
        edges = list(edges)
        with self._lock:
            current = self._nodes[NodeKind.CLOCK].get(updated.clock_id)
            if current is None:
                raise NotFoundError(f"Clock not found: {updated.clock_id}")
            if current.version != expected_version:
                return None
            stored = replace(updated, version=expected_version + 1)
            self._check_edges(edges, {})
            self._write({"op": "clock", "clock": stored.to_dict(), "edges": [e.to_dict() for e in edges]})
            self._apply([stored], edges)
            return stored

    def claim_unanchored_events(self, claim_id: str, until: datetime) -> list[Event]:
        """
        Atomically claim every unclaimed event recorded at or before `until`.

        Two callers never receive the same event.
        """
        with self._lock:
            claimed = [
                e
                for e in self._nodes[NodeKind.EVENT].values()
                if e.event_id not in self._claims and e.recorded_at <= until
            ]
            if not claimed:
                return []
            claimed.sort(key=lambda e: (e.source_system, e.sequence_number))
            event_ids = [e.event_id for e in claimed]
            self._write({"op": "claim", "claim_id": claim_id, "event_ids": event_ids})
            for event_id in event_ids:
                self._claims[event_id] = claim_id
            return claimed

    def release_claim(self, claim_id: str) -> None:
        with self._lock:
            self._write({"op": "release", "claim_id": claim_id})
            for event_id in [e for e, c in self._claims.items() if c == claim_id]:
                del self._claims[event_id]

    def save_anchor(self, anchor: MerkleAnchor) -> MerkleAnchor:
        with self._lock:
            existing = self._anchors.get(anchor.anchor_id)
            if existing is not None and existing.verification_status == VerificationStatus.VERIFIED:
                raise ValidationError(f"Anchor {anchor.anchor_id} is already verified")
            self._write({"op": "anchor", "anchor": anchor.to_dict()})
            self._anchors[anchor.anchor_id] = anchor
            return anchor

    def save_timestamp(self, timestamp: TsaTimestamp) -> TsaTimestamp:
        with self._lock:
            if timestamp.timestamp_id in self._timestamps:
                raise ValidationError(f"Duplicate timestamp id: {timestamp.timestamp_id}")
            self._write({"op": "timestamp", "timestamp": timestamp.to_dict()})
            self._timestamps[timestamp.timestamp_id] = timestamp
            return timestamp

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_node(self, ref: NodeRef) -> Node | None:
        with self._lock:
            return self._nodes[ref.kind].get(ref.node_id)

    def require_node(self, ref: NodeRef) -> Node:
        node = self.get_node(ref)
        if node is None:
            raise NotFoundError(f"{ref.kind.value} not found: {ref.node_id}")
        return node

    def query_nodes(self, kind: NodeKind, where: Callable[[Node], bool] | None = None) -> list[Node]:
        with self._lock:
            bucket = self._nodes[kind]
            nodes = [bucket[k] for k in sorted(bucket)]
        if where is not None:
            nodes = [n for n in nodes if where(n)]
        return nodes

    def query_edges(
        self,
        *,
        source: NodeRef | None = None,
        target: NodeRef | None = None,
        edge_type: EdgeType | None = None,
    ) -> list[Edge]:
        with self._lock:
            if source is not None:
                ids = list(self._out.get(source, []))
            elif target is not None:
                ids = list(self._in.get(target, []))
            else:
                ids = sorted(self._edges)
            edges = [self._edges[i] for i in ids]
        return [
            e
            for e in edges
            if (target is None or e.target == target) and (edge_type is None or e.edge_type == edge_type)
        ]

    def streams(self) -> list[str]:
        with self._lock:
            return sorted(s for s, seqs in self._streams.items() if seqs)

    def stream_events(self, source_system: str) -> list[Event]:
        """All events of one stream, in sequence order."""
        with self._lock:
            seqs = self._streams.get(source_system, {})
            events = self._nodes[NodeKind.EVENT]
            return [events[seqs[s]] for s in sorted(seqs)]

    def get_latest_sequence(self, source_system: str) -> int:
        with self._lock:
            seqs = self._streams.get(source_system)
            return max(seqs) if seqs else 0

    def get_stream_head(self, source_system: str) -> tuple[int, str] | None:
        """(sequence, payload_hash) of the newest event in a stream."""
        with self._lock:
            seqs = self._streams.get(source_system)
            if not seqs:
                return None
            event = self._nodes[NodeKind.EVENT][seqs[max(seqs)]]
            return event.sequence_number, event.payload_hash

    def get_anchor(self, anchor_id: str) -> MerkleAnchor | None:
        with self._lock:
            return self._anchors.get(anchor_id)

    def anchors(self, status: VerificationStatus | None = None) -> list[MerkleAnchor]:
        with self._lock:
            items = list(self._anchors.values())
        items.sort(key=lambda a: (a.created_at, a.anchor_id))
        return [a for a in items if status is None or a.verification_status == status]

    def anchor_for_event(self, event_id: str) -> MerkleAnchor | None:
        with self._lock:
            claim_id = self._claims.get(event_id)
            return self._anchors.get(claim_id) if claim_id else None

    def timestamps_for(self, subject_id: str) -> list[TsaTimestamp]:
        with self._lock:
            return sorted(
                (t for t in self._timestamps.values() if t.subject_id == subject_id),
                key=lambda t: (t.tsa_time, t.timestamp_id),
            )

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            nodes = {kind: dict(bucket) for kind, bucket in self._nodes.items()}
            edges = list(self._edges.values())
        return GraphSnapshot(nodes, edges)
