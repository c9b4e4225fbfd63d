"""Workspace lookup and membership checks shared by the routers."""
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import HTTPException
from pymongo.database import Database

from database import oid


def load_workspace(db: Database, workspace_id: str) -> Dict[str, Any]:
    workspace = db["workspace"].find_one({"_id": oid(workspace_id)})
    if not workspace:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


def find_member(workspace: Dict[str, Any], user_id: str) -> Optional[Dict[str, Any]]:
    for member in workspace.get("members", []):
        if str(member["user"]) == user_id:
            return member
    return None


def admin_count(members: List[Dict[str, Any]]) -> int:
    return sum(1 for m in members if m.get("role") == "admin")


def require_member(db: Database, workspace_id: str, user: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    workspace = load_workspace(db, workspace_id)
    member = find_member(workspace, user["id"])
    if not member:
        raise HTTPException(status_code=403, detail="You do not have access to this workspace")
    return workspace, member


def require_admin(
    db: Database, workspace_id: str, user: Dict[str, Any], action: str
) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    workspace = load_workspace(db, workspace_id)
    member = find_member(workspace, user["id"])
    if not member:
        raise HTTPException(status_code=403, detail=f"Not authorized to {action} this workspace")
    if member.get("role") != "admin":
        raise HTTPException(status_code=403, detail=f"Only admins can {action} the workspace")
    return workspace, member


def populate_members(db: Database, members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = [m["user"] if isinstance(m["user"], ObjectId) else oid(str(m["user"])) for m in members]
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}}, {"name": 1, "email": 1})}
    populated = []
    for member, user_id in zip(members, ids):
        user = users.get(user_id, {})
        populated.append({
            "user": {"id": str(user_id), "name": user.get("name", ""), "email": user.get("email", "")},
            "role": member.get("role", "member"),
        })
    return populated
