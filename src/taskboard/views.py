"""
View models for the board and workflow renderers.

Pure functions of store state: a renderer redraws by calling these and
painting the result.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .board import TaskStore, quick_move_targets
from .models import STATUS_ORDER, TaskStatus
from .workflow import ConnectionState, WorkflowStore

COLUMN_TITLES = {
    TaskStatus.NOT_STARTED: "Not Started",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.DONE: "Done",
}


@dataclass(frozen=True)
class Box:
    """Rendered bounding box, relative to the canvas."""
    left: float
    top: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return self.left + self.width / 2, self.top + self.height / 2


@dataclass
class CardView:
    id: str
    text: str
    emoji: str
    status: TaskStatus
    group: Optional[str]
    quick_moves: List[TaskStatus]


@dataclass
class GroupSection:
    name: str
    cards: List[CardView]


@dataclass
class ColumnView:
    status: TaskStatus
    title: str
    count: int
    ungrouped: List[CardView] = field(default_factory=list)
    groups: List[GroupSection] = field(default_factory=list)


@dataclass
class NodeView:
    id: str
    title: str
    emoji: str
    description: str
    x: float
    y: float
    is_source: bool = False


@dataclass
class EdgeView:
    from_id: str
    to_id: str
    path: str


@dataclass
class WorkflowView:
    nodes: List[NodeView]
    edges: List[EdgeView]
    connection_mode: bool


def _card(task) -> CardView:
    return CardView(
        id=task.id,
        text=task.text,
        emoji=task.emoji,
        status=task.status,
        group=task.group,
        quick_moves=quick_move_targets(task.status),
    )


def build_board_view(store: TaskStore) -> List[ColumnView]:
    """
    One column per status, in display order.

    Registered groups with no cards in a column are omitted from that column;
    tasks pointing at an unregistered group land in ``ungrouped``.
    """
    columns = []
    for status in STATUS_ORDER:
        sections = []
        for name in store.groups:
            cards = [_card(t) for t in store.list_by_status_and_group(status, name)]
            if cards:
                sections.append(GroupSection(name=name, cards=cards))
        columns.append(ColumnView(
            status=status,
            title=COLUMN_TITLES[status],
            count=len(store.list_by_status(status)),
            ungrouped=[_card(t) for t in store.list_by_status_and_group(status, None)],
            groups=sections,
        ))
    return columns


def _fmt(value: float) -> str:
    return f"{value:g}"


def connection_path(from_box: Box, to_box: Box) -> str:
    """Quadratic SVG path between the centres of two rendered boxes."""
    x1, y1 = from_box.center
    x2, y2 = to_box.center
    mid_x = (x1 + x2) / 2
    return (f"M {_fmt(x1)} {_fmt(y1)} "
            f"Q {_fmt(mid_x)} {_fmt(y1)}, {_fmt(mid_x)} {_fmt((y1 + y2) / 2)} "
            f"T {_fmt(x2)} {_fmt(y2)}")


def build_workflow_view(store: WorkflowStore, state: ConnectionState,
                        boxes: Optional[Dict[str, Box]] = None) -> WorkflowView:
    """
    Nodes plus edges routed through the boxes the renderer measured.

    Edges are skipped when either endpoint node or its box is missing.
    """
    boxes = boxes or {}
    nodes = [
        NodeView(
            id=t.id, title=t.title, emoji=t.emoji, description=t.description,
            x=t.x, y=t.y, is_source=state.active and state.source == t.id,
        )
        for t in store.tasks
    ]
    known = {t.id for t in store.tasks}
    edges = []
    for conn in store.connections:
        if conn.from_ not in known or conn.to not in known:
            continue
        if conn.from_ not in boxes or conn.to not in boxes:
            continue
        edges.append(EdgeView(conn.from_, conn.to, connection_path(boxes[conn.from_], boxes[conn.to])))
    return WorkflowView(nodes=nodes, edges=edges, connection_mode=state.active)
