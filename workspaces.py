import json
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from bson import ObjectId
from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel, EmailStr, Field, ValidationError
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError
from sse_starlette.sse import EventSourceResponse

from access import admin_count, find_member, populate_members, require_admin, require_member
from auth import get_current_user
from config import settings
from database import create_document, get_db, oid, serialize, utcnow
from errors import bad_request
from events import broadcast_workspace, broker
from schemas import Member, Message, Stage, Task, TaskList, Workspace, check_unique_stage_names, default_stages
from uploads import WORKSPACE_IMAGE_TYPES, remove_upload, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workspaces", tags=["workspaces"])

LAST_ADMIN_MESSAGE = "Cannot remove the last admin from the workspace"


# -----------------------------
# Schemas (requests)
# -----------------------------
class AddMemberRequest(BaseModel):
    user_id: Optional[str] = None
    email: Optional[EmailStr] = None
    role: str = "member"


class UpdateMemberRequest(BaseModel):
    role: str


class StageUpdate(BaseModel):
    name: Optional[str] = None
    color: Optional[str] = None
    category: Optional[str] = None


class ListCreate(BaseModel):
    name: str
    description: str = ""
    color: str = "#ffffff"


class ListUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class ListColorUpdate(BaseModel):
    color: str


class ReorderRequest(BaseModel):
    new_order: List[str]


class TaskCreate(BaseModel):
    name: str
    description: str = ""
    priority: str = "Low"
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    stage_id: Optional[str] = None


class TaskUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    stage_id: Optional[str] = None
    list_id: Optional[str] = Field(None, description="Move the task to another list")


class MessageCreate(BaseModel):
    content: str


# -----------------------------
# Helpers
# -----------------------------
def _parse_list_field(raw: Optional[str], field: str) -> Optional[List[Any]]:
    """Multipart list fields arrive JSON encoded or comma separated."""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail=f"Invalid {field} payload")
        if not isinstance(value, list):
            raise HTTPException(status_code=400, detail=f"Invalid {field} payload")
        return value
    return [part.strip() for part in raw.split(",") if part.strip()]


def _validated(model, data: Dict[str, Any]):
    try:
        return model(**data)
    except ValidationError as exc:
        raise bad_request(exc)


def _save(db: Database, workspace: Dict[str, Any], *fields: str) -> None:
    update = {field: workspace[field] for field in fields}
    update["updated_at"] = utcnow()
    db["workspace"].update_one({"_id": workspace["_id"]}, {"$set": update})


def _find(items: List[Dict[str, Any]], item_id: str, what: str) -> Dict[str, Any]:
    for item in items:
        if item["id"] == item_id:
            return item
    raise HTTPException(status_code=404, detail=f"{what} not found")


def _summary(workspace: Dict[str, Any]) -> Dict[str, Any]:
    return serialize({
        "_id": workspace["_id"],
        "workspace_title": workspace["workspace_title"],
        "workspace_description": workspace.get("workspace_description", ""),
        "cover_image": workspace.get("cover_image", ""),
        "workspace_type": workspace.get("workspace_type"),
        "selected_views": workspace.get("selected_views", []),
        "created_by": workspace.get("created_by"),
        "creation_date_time": workspace.get("creation_date_time"),
    })


def _detail(db: Database, workspace: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize(workspace)
    data["members"] = populate_members(db, workspace.get("members", []))
    return data


def _title_taken(db: Database, title: str, creator: Any, exclude: Optional[ObjectId] = None) -> bool:
    query: Dict[str, Any] = {"workspace_title": title, "created_by": creator}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    return db["workspace"].find_one(query) is not None


def _check_task_refs(workspace: Dict[str, Any], task: Dict[str, Any]) -> None:
    if task.get("assignee") and not find_member(workspace, task["assignee"]):
        raise HTTPException(status_code=400, detail="Assignee must be a member of this workspace")
    if task.get("stage_id") and not any(s["id"] == task["stage_id"] for s in workspace.get("stages", [])):
        raise HTTPException(status_code=400, detail="Stage not found in this workspace")


# -----------------------------
# Workspace endpoints
# -----------------------------
@router.post("", status_code=201)
async def create_workspace(
    workspace_title: Optional[str] = Form(None),
    workspace_description: str = Form(""),
    workspace_type: str = Form("Starter"),
    selected_views: Optional[str] = Form(None),
    invite_people: Optional[str] = Form(None),
    stages: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    if not workspace_title or not workspace_title.strip():
        raise HTTPException(status_code=400, detail="Workspace title is required")

    data: Dict[str, Any] = {
        "workspace_title": workspace_title,
        "workspace_description": workspace_description,
        "workspace_type": workspace_type,
    }
    views = _parse_list_field(selected_views, "selected_views")
    if views is not None:
        data["selected_views"] = views
    invites = _parse_list_field(invite_people, "invite_people")
    if invites is not None:
        data["invite_people"] = invites
    stage_list = _parse_list_field(stages, "stages")
    if stage_list:
        data["stages"] = stage_list
    model = _validated(Workspace, data)
    if not model.stages:
        model.stages = default_stages(model.workspace_type)

    creator = oid(user["id"])
    if _title_taken(db, model.workspace_title, creator):
        raise HTTPException(status_code=400, detail="Workspace with this title already exists")

    if cover_image is not None and cover_image.filename:
        model.cover_image = await save_upload(cover_image, "workspaces", "workspace", WORKSPACE_IMAGE_TYPES)
    else:
        model.cover_image = settings.default_cover_image

    doc = model.model_dump()
    doc.update({
        "created_by": creator,
        "creation_date_time": utcnow(),
        "lists": [],
        "messages": [],
        "members": [{"user": creator, "role": "admin"}],
    })
    try:
        workspace = create_document(db, "workspace", doc)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="Workspace with this title already exists")
    logger.info("Workspace %s created by %s", workspace["_id"], user["id"])
    return _detail(db, workspace)


@router.get("")
async def list_workspaces(user=Depends(get_current_user), db: Database = Depends(get_db)):
    cursor = db["workspace"].find({"members.user": oid(user["id"])}).sort("creation_date_time", 1)
    result = []
    for workspace in cursor:
        summary = _summary(workspace)
        summary["role"] = find_member(workspace, user["id"])["role"]
        result.append(summary)
    return result


@router.get("/{workspace_id}")
async def get_workspace(workspace_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    workspace, _ = require_member(db, workspace_id, user)
    return _detail(db, workspace)


@router.put("/{workspace_id}")
async def update_workspace(
    workspace_id: str,
    request: Request,
    workspace_title: Optional[str] = Form(None),
    workspace_description: Optional[str] = Form(None),
    workspace_type: Optional[str] = Form(None),
    selected_views: Optional[str] = Form(None),
    invite_people: Optional[str] = Form(None),
    cover_image: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_admin(db, workspace_id, user, "update")

    data = {field: workspace.get(field) for field in Workspace.model_fields}
    if workspace_title:
        data["workspace_title"] = workspace_title
    # An empty form field arrives as None, so presence is read from the raw form.
    form = await request.form()
    if "workspace_description" in form:
        data["workspace_description"] = workspace_description or ""
    if workspace_type:
        data["workspace_type"] = workspace_type
    views = _parse_list_field(selected_views, "selected_views")
    if views is not None:
        data["selected_views"] = views
    invites = _parse_list_field(invite_people, "invite_people")
    if invites is not None:
        data["invite_people"] = invites
    model = _validated(Workspace, data)

    if model.workspace_title != workspace["workspace_title"] and _title_taken(
        db, model.workspace_title, workspace["created_by"], exclude=workspace["_id"]
    ):
        raise HTTPException(status_code=400, detail="Workspace with this title already exists")

    if cover_image is not None and cover_image.filename:
        new_cover = await save_upload(cover_image, "workspaces", "workspace", WORKSPACE_IMAGE_TYPES)
        remove_upload(workspace.get("cover_image"))
        model.cover_image = new_cover

    workspace.update(model.model_dump(exclude={"stages"}))
    _save(db, workspace, "workspace_title", "workspace_description", "workspace_type",
          "selected_views", "invite_people", "cover_image")
    summary = _summary(workspace)
    await broadcast_workspace(str(workspace["_id"]), "WORKSPACE_UPDATED", summary)
    return summary


@router.delete("/{workspace_id}")
async def delete_workspace(workspace_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    workspace, _ = require_admin(db, workspace_id, user, "delete")
    db["workspace"].delete_one({"_id": workspace["_id"]})
    db["mindmap"].delete_one({"workspace_id": workspace["_id"]})
    remove_upload(workspace.get("cover_image"))
    logger.info("Workspace %s deleted by %s", workspace["_id"], user["id"])
    await broadcast_workspace(str(workspace["_id"]), "WORKSPACE_DELETED", {"workspace_id": str(workspace["_id"])})
    broker.close_workspace(str(workspace["_id"]))
    return {"message": "Workspace removed"}


# -----------------------------
# Members
# -----------------------------
@router.post("/{workspace_id}/members", status_code=201)
async def add_member(
    workspace_id: str,
    body: AddMemberRequest,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_admin(db, workspace_id, user, "add members to")
    if not body.user_id and not body.email:
        raise HTTPException(status_code=400, detail="User ID is required")
    member = _validated(Member, {"user": body.user_id or str(body.email), "role": body.role})

    query = {"_id": oid(body.user_id)} if body.user_id else {"email": body.email}
    user_to_add = db["user"].find_one(query)
    if not user_to_add:
        raise HTTPException(status_code=404, detail="User not found")
    if find_member(workspace, str(user_to_add["_id"])):
        raise HTTPException(status_code=400, detail="User is already a member of this workspace")

    workspace["members"].append({"user": user_to_add["_id"], "role": member.role})
    workspace["invite_people"] = [e for e in workspace.get("invite_people", []) if e != user_to_add["email"]]
    _save(db, workspace, "members", "invite_people")

    added = populate_members(db, [workspace["members"][-1]])[0]
    await broadcast_workspace(str(workspace["_id"]), "MEMBER_ADDED", added)
    return {"message": "Member added successfully", "member": added}


@router.put("/{workspace_id}/members/{member_id}")
async def update_member(
    workspace_id: str,
    member_id: str,
    body: UpdateMemberRequest,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_admin(db, workspace_id, user, "change member roles in")
    _validated(Member, {"user": member_id, "role": body.role})
    member = find_member(workspace, member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this workspace")
    if member["role"] == "admin" and body.role != "admin" and admin_count(workspace["members"]) <= 1:
        raise HTTPException(status_code=400, detail=LAST_ADMIN_MESSAGE)

    member["role"] = body.role
    _save(db, workspace, "members")
    updated = populate_members(db, [member])[0]
    await broadcast_workspace(str(workspace["_id"]), "MEMBER_UPDATED", updated)
    return updated


@router.delete("/{workspace_id}/members/{member_id}")
async def remove_member(
    workspace_id: str,
    member_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_admin(db, workspace_id, user, "remove members from")
    member = find_member(workspace, member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found in this workspace")
    remaining = [m for m in workspace["members"] if m is not member]
    if admin_count(remaining) == 0:
        raise HTTPException(status_code=400, detail=LAST_ADMIN_MESSAGE)

    workspace["members"] = remaining
    for task_list in workspace.get("lists", []):
        for task in task_list["tasks"]:
            if task.get("assignee") == member_id:
                task["assignee"] = None
    _save(db, workspace, "members", "lists")
    await broadcast_workspace(str(workspace["_id"]), "MEMBER_REMOVED", {"user_id": member_id})
    broker.disconnect_user(str(workspace["_id"]), member_id)
    return {"message": "Member removed successfully"}


# -----------------------------
# Stages
# -----------------------------
@router.post("/{workspace_id}/stages", status_code=201)
async def add_stage(workspace_id: str, body: Stage, user=Depends(get_current_user), db: Database = Depends(get_db)):
    workspace, _ = require_member(db, workspace_id, user)
    stages = workspace.setdefault("stages", [])
    stage = body
    if "id" not in body.model_fields_set or any(s["id"] == body.id for s in stages):
        stage = body.model_copy(update={"id": f"stage-{uuid4()}"})
    try:
        check_unique_stage_names([Stage(**s) for s in stages] + [stage])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    stages.append(stage.model_dump())
    _save(db, workspace, "stages")
    await broadcast_workspace(str(workspace["_id"]), "STAGE_ADDED", stage.model_dump())
    return stage.model_dump()


@router.put("/{workspace_id}/stages/{stage_id}")
async def update_stage(
    workspace_id: str,
    stage_id: str,
    body: StageUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    stages = workspace.get("stages", [])
    stage = _find(stages, stage_id, "Stage")
    updated = _validated(Stage, {**stage, **body.model_dump(exclude_none=True)})
    try:
        check_unique_stage_names([Stage(**s) for s in stages if s["id"] != stage_id] + [updated])
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    stage.update(updated.model_dump())
    _save(db, workspace, "stages")
    await broadcast_workspace(str(workspace["_id"]), "STAGE_UPDATED", stage)
    return stage


@router.delete("/{workspace_id}/stages/{stage_id}")
async def delete_stage(
    workspace_id: str,
    stage_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    stage = _find(workspace.get("stages", []), stage_id, "Stage")
    workspace["stages"].remove(stage)
    for task_list in workspace.get("lists", []):
        for task in task_list["tasks"]:
            if task.get("stage_id") == stage_id:
                task["stage_id"] = None
    _save(db, workspace, "stages", "lists")
    await broadcast_workspace(str(workspace["_id"]), "STAGE_DELETED", {"stage_id": stage_id})
    return {"message": "Stage deleted successfully"}


# -----------------------------
# Lists
# -----------------------------
@router.post("/{workspace_id}/lists", status_code=201)
async def add_list(workspace_id: str, body: ListCreate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _validated(TaskList, body.model_dump()).model_dump()
    workspace.setdefault("lists", []).append(task_list)
    _save(db, workspace, "lists")
    payload = serialize(task_list)
    await broadcast_workspace(str(workspace["_id"]), "LIST_ADDED", payload)
    return payload


@router.put("/{workspace_id}/lists/reorder")
async def reorder_lists(
    workspace_id: str,
    body: ReorderRequest,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    lists = workspace.get("lists", [])
    by_id = {task_list["id"]: task_list for task_list in lists}
    if len(body.new_order) != len(lists) or set(body.new_order) != set(by_id):
        raise HTTPException(status_code=400, detail="New order must contain every list exactly once")

    workspace["lists"] = [by_id[list_id] for list_id in body.new_order]
    _save(db, workspace, "lists")
    await broadcast_workspace(str(workspace["_id"]), "LISTS_REORDERED", {"order": body.new_order})
    return serialize(workspace["lists"])


@router.put("/{workspace_id}/lists/{list_id}")
async def update_list(
    workspace_id: str,
    list_id: str,
    body: ListUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _find(workspace.get("lists", []), list_id, "List")
    merged = {**task_list, **body.model_dump(exclude_none=True)}
    task_list.update(_validated(TaskList, merged).model_dump(include={"name", "description"}))
    _save(db, workspace, "lists")
    payload = serialize(task_list)
    await broadcast_workspace(str(workspace["_id"]), "LIST_UPDATED", payload)
    return payload


@router.put("/{workspace_id}/lists/{list_id}/color")
async def update_list_color(
    workspace_id: str,
    list_id: str,
    body: ListColorUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _find(workspace.get("lists", []), list_id, "List")
    task_list["color"] = _validated(TaskList, {**task_list, "color": body.color}).color
    _save(db, workspace, "lists")
    payload = serialize(task_list)
    await broadcast_workspace(str(workspace["_id"]), "LIST_UPDATED", payload)
    return payload


@router.delete("/{workspace_id}/lists/{list_id}")
async def delete_list(
    workspace_id: str,
    list_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _find(workspace.get("lists", []), list_id, "List")
    workspace["lists"].remove(task_list)
    _save(db, workspace, "lists")
    await broadcast_workspace(str(workspace["_id"]), "LIST_DELETED", {"list_id": list_id})
    return {"message": "List deleted successfully"}


# -----------------------------
# Tasks
# -----------------------------
@router.post("/{workspace_id}/lists/{list_id}/tasks", status_code=201)
async def add_task(
    workspace_id: str,
    list_id: str,
    body: TaskCreate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _find(workspace.get("lists", []), list_id, "List")
    task = _validated(Task, body.model_dump()).model_dump()
    _check_task_refs(workspace, task)

    task_list["tasks"].append(task)
    _save(db, workspace, "lists")
    payload = {**serialize(task), "list_id": list_id}
    await broadcast_workspace(str(workspace["_id"]), "TASK_ADDED", payload)
    return payload


@router.put("/{workspace_id}/lists/{list_id}/tasks/{task_id}")
async def update_task(
    workspace_id: str,
    list_id: str,
    task_id: str,
    body: TaskUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    lists = workspace.get("lists", [])
    task_list = _find(lists, list_id, "List")
    task = _find(task_list["tasks"], task_id, "Task")

    changes = body.model_dump(exclude_unset=True)
    target_id = changes.pop("list_id", None) or list_id
    target = _find(lists, target_id, "List")
    for required in ("name", "priority"):
        if changes.get(required) is None:
            changes.pop(required, None)
    updated = _validated(Task, {**task, **changes}).model_dump()
    _check_task_refs(workspace, updated)

    if target is task_list:
        task.update(updated)
    else:
        task_list["tasks"].remove(task)
        target["tasks"].append(updated)
    _save(db, workspace, "lists")
    payload = {**serialize(updated), "list_id": target_id}
    await broadcast_workspace(str(workspace["_id"]), "TASK_UPDATED", payload)
    return payload


@router.delete("/{workspace_id}/lists/{list_id}/tasks/{task_id}")
async def delete_task(
    workspace_id: str,
    list_id: str,
    task_id: str,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    task_list = _find(workspace.get("lists", []), list_id, "List")
    task = _find(task_list["tasks"], task_id, "Task")
    task_list["tasks"].remove(task)
    _save(db, workspace, "lists")
    await broadcast_workspace(str(workspace["_id"]), "TASK_DELETED", {"list_id": list_id, "task_id": task_id})
    return {"message": "Task deleted successfully"}


# -----------------------------
# Team chat
# -----------------------------
@router.get("/{workspace_id}/messages")
async def list_messages(workspace_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    workspace, _ = require_member(db, workspace_id, user)
    return serialize(workspace.get("messages", []))


@router.post("/{workspace_id}/messages", status_code=201)
async def send_message(
    workspace_id: str,
    body: MessageCreate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    message = _validated(Message, {"sender": user["id"], "sender_name": user.get("name", ""), "content": body.content})
    workspace.setdefault("messages", []).append(message.model_dump())
    _save(db, workspace, "messages")
    payload = serialize(message.model_dump())
    await broadcast_workspace(str(workspace["_id"]), "NEW_MESSAGE", payload)
    return payload


# -----------------------------
# Live updates
# -----------------------------
@router.get("/{workspace_id}/updates")
async def workspace_updates(
    workspace_id: str,
    request: Request,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    workspace, _ = require_member(db, workspace_id, user)
    logger.info("User %s subscribed to workspace %s", user["id"], workspace["_id"])
    return EventSourceResponse(
        broker.stream(request, str(workspace["_id"]), user["id"]),
        ping=settings.sse_ping_seconds,
        sep="\n",
    )
