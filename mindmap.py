import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from access import require_member
from auth import get_current_user
from database import create_document, get_db, serialize, utcnow
from errors import bad_request
from events import broadcast_workspace
from schemas import Edge, MindMap, Node, Position, check_hex_color

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mindmap", tags=["mindmap"])


class NodeCreate(BaseModel):
    label: str
    color: str = "#ffffff"
    position: Position


class NodeUpdate(BaseModel):
    label: Optional[str] = None
    color: Optional[str] = None
    position: Optional[Position] = None


class EdgeCreate(BaseModel):
    source: str
    target: str


class EdgeUpdate(BaseModel):
    source: Optional[str] = None
    target: Optional[str] = None


def _get_or_create(db: Database, workspace: Dict[str, Any]) -> Dict[str, Any]:
    mind_map = db["mindmap"].find_one({"workspace_id": workspace["_id"]})
    if mind_map:
        return mind_map
    try:
        doc = MindMap(workspace_id=str(workspace["_id"])).model_dump()
        doc["workspace_id"] = workspace["_id"]
        mind_map = create_document(db, "mindmap", doc)
        logger.info("Created mind map for workspace %s", workspace["_id"])
    except DuplicateKeyError:
        mind_map = db["mindmap"].find_one({"workspace_id": workspace["_id"]})
    return mind_map


def _mind_map_for(db: Database, workspace_id: str, user: Dict[str, Any]):
    workspace, _ = require_member(db, workspace_id, user)
    return str(workspace["_id"]), _get_or_create(db, workspace)


def _save(db: Database, mind_map: Dict[str, Any], *fields: str) -> None:
    update = {field: mind_map[field] for field in fields}
    update["updated_at"] = utcnow()
    db["mindmap"].update_one({"_id": mind_map["_id"]}, {"$set": update})


def _find(items, item_id: str, what: str) -> Dict[str, Any]:
    for item in items:
        if item["id"] == item_id:
            return item
    raise HTTPException(status_code=404, detail=f"{what} not found")


def _has_node(mind_map: Dict[str, Any], node_id: str) -> bool:
    return any(node["id"] == node_id for node in mind_map["nodes"])


@router.get("/{workspace_id}")
async def get_mind_map(workspace_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    _, mind_map = _mind_map_for(db, workspace_id, user)
    return serialize(mind_map)


# -----------------------------
# Nodes
# -----------------------------
@router.post("/{workspace_id}/nodes", status_code=201)
async def add_node(
    workspace_id: str,
    body: NodeCreate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key, mind_map = _mind_map_for(db, workspace_id, user)
    try:
        node = Node(**body.model_dump()).model_dump()
    except ValidationError as exc:
        raise bad_request(exc)

    mind_map["nodes"].append(node)
    _save(db, mind_map, "nodes")
    await broadcast_workspace(key, "NODE_ADDED", node)
    return node


@router.put("/{workspace_id}/nodes/{node_id}")
async def update_node(
    workspace_id: str,
    node_id: str,
    body: NodeUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key, mind_map = _mind_map_for(db, workspace_id, user)
    node = _find(mind_map["nodes"], node_id, "Node")

    if body.label is not None:
        if not body.label.strip():
            raise HTTPException(status_code=400, detail="Node label must be a non-empty string")
        node["label"] = body.label.strip()
    if body.color is not None:
        try:
            node["color"] = check_hex_color(body.color)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid HEX color code")
    if body.position is not None:
        node["position"] = body.position.model_dump()
    try:
        Node(**node)
    except ValidationError as exc:
        raise bad_request(exc)

    _save(db, mind_map, "nodes")
    await broadcast_workspace(key, "NODE_UPDATED", node)
    return node


@router.delete("/{workspace_id}/nodes/{node_id}")
async def delete_node(
    workspace_id: str,
    node_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key, mind_map = _mind_map_for(db, workspace_id, user)
    node = _find(mind_map["nodes"], node_id, "Node")
    mind_map["nodes"].remove(node)
    mind_map["edges"] = [e for e in mind_map["edges"] if e["source"] != node_id and e["target"] != node_id]
    _save(db, mind_map, "nodes", "edges")
    await broadcast_workspace(key, "NODE_DELETED", {"node_id": node_id})
    return {"message": "Node deleted successfully"}


# -----------------------------
# Edges
# -----------------------------
@router.post("/{workspace_id}/edges", status_code=201)
async def add_edge(
    workspace_id: str,
    body: EdgeCreate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not body.source or not body.target:
        raise HTTPException(status_code=400, detail="Source and target node IDs are required")
    key, mind_map = _mind_map_for(db, workspace_id, user)
    if not _has_node(mind_map, body.source) or not _has_node(mind_map, body.target):
        raise HTTPException(status_code=400, detail="Source or target node does not exist")
    if any(e["source"] == body.source and e["target"] == body.target for e in mind_map["edges"]):
        raise HTTPException(status_code=400, detail="Edge already exists between these nodes")

    edge = Edge(source=body.source, target=body.target).model_dump()
    mind_map["edges"].append(edge)
    _save(db, mind_map, "edges")
    await broadcast_workspace(key, "EDGE_ADDED", edge)
    return edge


@router.put("/{workspace_id}/edges/{edge_id}")
async def update_edge(
    workspace_id: str,
    edge_id: str,
    body: EdgeUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key, mind_map = _mind_map_for(db, workspace_id, user)
    edge = _find(mind_map["edges"], edge_id, "Edge")

    if body.source:
        if not _has_node(mind_map, body.source):
            raise HTTPException(status_code=400, detail="Source node does not exist")
        edge["source"] = body.source
    if body.target:
        if not _has_node(mind_map, body.target):
            raise HTTPException(status_code=400, detail="Target node does not exist")
        edge["target"] = body.target
    if any(
        e is not edge and e["source"] == edge["source"] and e["target"] == edge["target"]
        for e in mind_map["edges"]
    ):
        raise HTTPException(status_code=400, detail="Edge already exists between these nodes")

    _save(db, mind_map, "edges")
    await broadcast_workspace(key, "EDGE_UPDATED", edge)
    return edge


@router.delete("/{workspace_id}/edges/{edge_id}")
async def delete_edge(
    workspace_id: str,
    edge_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    key, mind_map = _mind_map_for(db, workspace_id, user)
    edge = _find(mind_map["edges"], edge_id, "Edge")
    mind_map["edges"].remove(edge)
    _save(db, mind_map, "edges")
    await broadcast_workspace(key, "EDGE_DELETED", {"edge_id": edge_id})
    return {"message": "Edge deleted successfully"}
