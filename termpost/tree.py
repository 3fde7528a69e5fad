"""In-memory collection tree.

A collection is held as an arena: every folder and request is a node keyed by
its id, with a parent link and an ordered list of child ids. Rename, delete
and move are then plain dictionary/list updates. ``to_file``/``from_file``
convert to and from the nested layout stored on disk.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import NotFoundError, StoreError
from .models import ApiRequest, CollectionFile, FolderItem, RequestItem, new_id


@dataclass
class Node:
    id: str
    parent_id: Optional[str]
    name: str
    request: Optional[ApiRequest] = None
    children: List[str] = field(default_factory=list)
    expanded: bool = True

    @property
    def is_folder(self) -> bool:
        return self.request is None


class CollectionTree:
    def __init__(self, name: str, collection_id: Optional[str] = None):
        self.id = collection_id or new_id()
        self.name = name
        self.nodes: Dict[str, Node] = {}
        self.root: List[str] = []
        self.expanded = True

    def __eq__(self, other) -> bool:
        if not isinstance(other, CollectionTree):
            return NotImplemented
        return (
            self.id == other.id
            and self.name == other.name
            and self.root == other.root
            and self.nodes == other.nodes
            and self.expanded == other.expanded
        )

    def __repr__(self) -> str:
        return f"CollectionTree(id={self.id!r}, name={self.name!r}, nodes={len(self.nodes)})"

    # Construction from / to the persisted layout

    @classmethod
    def from_file(cls, data: CollectionFile) -> "CollectionTree":
        tree = cls(data.name, data.id)
        tree._load_items(data.items, None)
        return tree

    def _load_items(self, items, parent_id: Optional[str]):
        for item in items:
            if isinstance(item, FolderItem):
                node = Node(id=item.id, parent_id=parent_id, name=item.name, expanded=item.expanded)
                self._attach(node)
                self._load_items(item.items, item.id)
            else:
                request = ApiRequest.model_validate(item.model_dump(exclude={"type"}))
                self._attach(Node(id=request.id, parent_id=parent_id, name=request.name, request=request))

    def to_file(self) -> CollectionFile:
        return CollectionFile(id=self.id, name=self.name, items=self._dump_items(self.root))

    def _dump_items(self, ids: List[str]):
        items = []
        for node_id in ids:
            node = self.nodes[node_id]
            if node.is_folder:
                items.append(FolderItem(
                    id=node.id,
                    name=node.name,
                    items=self._dump_items(node.children),
                    expanded=node.expanded,
                ))
            else:
                items.append(RequestItem(**node.request.model_dump()))
        return items

    # Lookup

    def get(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NotFoundError("item", node_id)
        return node

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def children_of(self, parent_id: Optional[str]) -> List[str]:
        if parent_id is None:
            return self.root
        parent = self.get(parent_id)
        if not parent.is_folder:
            raise StoreError(f"Not a folder: {parent.name}")
        return parent.children

    def find_request(self, request_id: str) -> Optional[ApiRequest]:
        node = self.nodes.get(request_id)
        if node is None or node.is_folder:
            return None
        return node.request

    def requests(self) -> List[ApiRequest]:
        return [node.request for node in self.walk() if not node.is_folder]

    def walk(self, ids: Optional[List[str]] = None) -> Iterator[Node]:
        """Depth-first traversal in display order, ignoring expansion."""
        for node_id in self.root if ids is None else ids:
            node = self.nodes[node_id]
            yield node
            if node.is_folder:
                yield from self.walk(node.children)

    def flatten(self) -> List[Tuple[int, Node]]:
        """Visible rows as (depth, node), honouring folder expansion."""
        rows: List[Tuple[int, Node]] = []
        self._flatten(self.root, 0, rows)
        return rows

    def _flatten(self, ids: List[str], depth: int, rows: List[Tuple[int, Node]]):
        for node_id in ids:
            node = self.nodes[node_id]
            rows.append((depth, node))
            if node.is_folder and node.expanded:
                self._flatten(node.children, depth + 1, rows)

    def descendants(self, node_id: str) -> List[str]:
        node = self.get(node_id)
        ids = []
        for child_id in node.children:
            ids.append(child_id)
            ids.extend(self.descendants(child_id))
        return ids

    # Mutation

    def _attach(self, node: Node, index: Optional[int] = None):
        siblings = self.children_of(node.parent_id)
        self.nodes[node.id] = node
        if index is None:
            siblings.append(node.id)
        else:
            siblings.insert(index, node.id)

    def add_folder(self, name: str, parent_id: Optional[str] = None, folder_id: Optional[str] = None) -> Node:
        node = Node(id=folder_id or new_id(), parent_id=parent_id, name=name)
        self._attach(node)
        return node

    def add_request(self, request: ApiRequest, parent_id: Optional[str] = None) -> Node:
        if request.id in self.nodes:
            raise StoreError(f"Duplicate id: {request.id}")
        node = Node(id=request.id, parent_id=parent_id, name=request.name, request=request)
        self._attach(node)
        return node

    def rename(self, node_id: str, name: str):
        node = self.get(node_id)
        node.name = name
        if node.request is not None:
            node.request.name = name

    def update_request(self, request: ApiRequest):
        node = self.get(request.id)
        if node.is_folder:
            raise StoreError(f"Not a request: {node.name}")
        node.request = request.model_copy(deep=True)
        node.name = request.name

    def remove(self, node_id: str) -> List[str]:
        """Detach a node and drop it together with every descendant.

        Returns the ids removed.
        """
        return [node.id for node in self.detach(node_id)]

    def move(self, node_id: str, new_parent_id: Optional[str]):
        node = self.get(node_id)
        if new_parent_id is not None:
            if new_parent_id == node_id or new_parent_id in self.descendants(node_id):
                raise StoreError("Cannot move a folder into itself")
            if not self.get(new_parent_id).is_folder:
                raise StoreError("Destination is not a folder")
        self.children_of(node.parent_id).remove(node_id)
        node.parent_id = new_parent_id
        self.children_of(new_parent_id).append(node_id)

    def detach(self, node_id: str) -> List[Node]:
        """Remove a subtree and return its nodes, subtree root first.

        Child links inside the subtree are kept so it can be grafted elsewhere.
        """
        node = self.get(node_id)
        nodes = [node] + [self.nodes[i] for i in self.descendants(node_id)]
        self.children_of(node.parent_id).remove(node_id)
        for moved in nodes:
            del self.nodes[moved.id]
        return nodes

    def graft(self, nodes: List[Node], parent_id: Optional[str]):
        clashes = [n.id for n in nodes if n.id in self.nodes]
        if clashes:
            raise StoreError(f"Duplicate id: {clashes[0]}")
        if parent_id is not None and not self.get(parent_id).is_folder:
            raise StoreError("Destination is not a folder")
        root = nodes[0]
        root.parent_id = parent_id
        for moved in nodes:
            self.nodes[moved.id] = moved
        self.children_of(parent_id).append(root.id)

    def parent_folder_id(self, node_id: str) -> Optional[str]:
        return self.get(node_id).parent_id

    def toggle_expanded(self, node_id: str):
        node = self.get(node_id)
        if node.is_folder:
            node.expanded = not node.expanded

