"""
Database Schemas for Cyclops

Each top-level Pydantic model represents a MongoDB collection; the collection
name is the lowercased class name (User -> "user", MindMap -> "mindmap").
Stage, TaskList, Task, Message, Member, Node and Edge are embedded documents.
"""
import re
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

WORKSPACE_TYPES = ("Starter", "Kanban", "Project", "Scrum")
STAGE_CATEGORIES = ("Not Started", "Active", "Done", "Pending")
TASK_PRIORITIES = ("High", "Moderate", "Low")
MEMBER_ROLES = ("admin", "member")

HEX_COLOR_RE = re.compile(r"^#([0-9A-F]{3}){1,2}$", re.IGNORECASE)
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_hex_color(value: str) -> str:
    if not HEX_COLOR_RE.match(value):
        raise ValueError(f"{value} is not a valid HEX color code!")
    return value


def check_choice(value: str, choices, what: str) -> str:
    if value not in choices:
        raise ValueError(f"{value} is not a valid {what}")
    return value


class Document(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)


# Auth and Users
class User(Document):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Unique email")
    password: str = Field(..., description="bcrypt hash, never returned")
    is_verified: bool = False
    verification_code: Optional[str] = None
    verification_code_expires: Optional[datetime] = None


class Profile(Document):
    user_id: str = Field(..., description="Owning user id, one profile per user")
    company_name: str = ""
    job_role: str = ""
    city: str = ""
    country: str = ""
    github_link: str = ""
    linkedin_link: str = ""
    profile_image: str = Field("", description="Relative path of the uploaded image")
    profile_banner: str = Field("", description="Relative path of the uploaded banner")


# Workspaces
class Stage(Document):
    id: str = Field(default_factory=lambda: f"stage-{uuid4()}")
    name: str = Field(..., min_length=1, max_length=100)
    color: str
    category: str

    @field_validator("color")
    @classmethod
    def _color(cls, v: str) -> str:
        return check_hex_color(v)

    @field_validator("category")
    @classmethod
    def _category(cls, v: str) -> str:
        return check_choice(v, STAGE_CATEGORIES, "category")


class Task(Document):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    priority: str = "Low"
    due_date: Optional[datetime] = None
    assignee: Optional[str] = Field(None, description="User id of a workspace member")
    stage_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("priority")
    @classmethod
    def _priority(cls, v: str) -> str:
        return check_choice(v, TASK_PRIORITIES, "priority")


class TaskList(Document):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    color: str = "#ffffff"
    tasks: List[Task] = Field(default_factory=list)

    @field_validator("color")
    @classmethod
    def _color(cls, v: str) -> str:
        return check_hex_color(v)


class Message(Document):
    id: str = Field(default_factory=new_id)
    sender: str
    sender_name: str = ""
    content: str = Field(..., min_length=1, max_length=1000)
    created_at: datetime = Field(default_factory=_utcnow)


class Member(Document):
    user: str
    role: str = "member"

    @field_validator("role")
    @classmethod
    def _role(cls, v: str) -> str:
        return check_choice(v, MEMBER_ROLES, "role")


class Workspace(Document):
    workspace_title: str = Field(..., min_length=1, max_length=100)
    workspace_description: str = Field("", max_length=500)
    cover_image: str = ""
    workspace_type: str = "Starter"
    selected_views: List[str] = Field(default_factory=lambda: ["List View"])
    invite_people: List[str] = Field(default_factory=list)
    stages: List[Stage] = Field(default_factory=list)

    @field_validator("workspace_type")
    @classmethod
    def _workspace_type(cls, v: str) -> str:
        return check_choice(v, WORKSPACE_TYPES, "workspace type")

    @field_validator("selected_views")
    @classmethod
    def _selected_views(cls, v: List[str]) -> List[str]:
        views = [view.strip() for view in v if view and view.strip()]
        if not views:
            raise ValueError("At least one view must be selected")
        return views

    @field_validator("invite_people")
    @classmethod
    def _invite_people(cls, v: List[str]) -> List[str]:
        if not all(EMAIL_RE.match(email) for email in v):
            raise ValueError("One or more email addresses are invalid")
        return v

    @field_validator("stages")
    @classmethod
    def _stages(cls, v: List[Stage]) -> List[Stage]:
        check_unique_stage_names(v)
        return v


def check_unique_stage_names(stages: List[Stage]) -> None:
    names = [stage.name.lower() for stage in stages]
    if len(names) != len(set(names)):
        raise ValueError("Stage names must be unique within the workspace")


# Mind maps
class Position(BaseModel):
    x: float
    y: float


class Node(Document):
    id: str = Field(default_factory=new_id)
    label: str = Field(..., max_length=100)
    color: str = "#ffffff"
    position: Position

    @field_validator("label")
    @classmethod
    def _label(cls, v: str) -> str:
        if not v:
            raise ValueError("Node label is required and must be a non-empty string")
        return v

    @field_validator("color")
    @classmethod
    def _color(cls, v: str) -> str:
        return check_hex_color(v)


class Edge(Document):
    id: str = Field(default_factory=new_id)
    source: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)


class MindMap(Document):
    workspace_id: str
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


_DEFAULT_STAGES = {
    "Starter": [
        ("open", "Open", "#7e57c2", "Pending"),
        ("in-progress", "In Progress", "#42a5f5", "Active"),
        ("review", "Review", "#fdd835", "Active"),
        ("done", "Done", "#d4d4d4", "Done"),
    ],
    "Kanban": [
        ("backlog", "Backlog", "#ff9800", "Pending"),
        ("in-progress", "In Progress", "#2196f3", "Active"),
        ("review", "Review", "#ffeb3b", "Active"),
        ("done", "Done", "#4caf50", "Done"),
    ],
    "Project": [
        ("planning", "Planning", "#9c27b0", "Pending"),
        ("execution", "Execution", "#3f51b5", "Active"),
        ("monitoring", "Monitoring", "#00bcd4", "Active"),
        ("closure", "Closure", "#8bc34a", "Done"),
    ],
    "Scrum": [
        ("product-backlog", "Product Backlog", "#ff5722", "Pending"),
        ("sprint-backlog", "Sprint Backlog", "#3f51b5", "Active"),
        ("in-progress", "In Progress", "#2196f3", "Active"),
        ("done", "Done", "#4caf50", "Done"),
    ],
}


def default_stages(workspace_type: str) -> List[Stage]:
    suffix = uuid4().hex[:8]
    return [
        Stage(id=f"stage-{suffix}-{slug}", name=name, color=color, category=category)
        for slug, name, color, category in _DEFAULT_STAGES.get(workspace_type, _DEFAULT_STAGES["Starter"])
    ]
