from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pymongo.database import Database

from auth import get_current_user
from database import get_db, oid, serialize, utcnow
from uploads import PROFILE_IMAGE_TYPES, remove_upload, save_upload

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _profile_response(profile: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
    data = serialize(profile)
    data["user"] = {"id": str(user["_id"]), "name": user["name"], "email": user["email"]}
    return data


@router.get("")
async def get_profile(user=Depends(get_current_user), db: Database = Depends(get_db)):
    profile = db["profile"].find_one({"user_id": oid(user["id"])})
    if not profile:
        raise HTTPException(status_code=404, detail="Profile not found")
    stored_user = db["user"].find_one({"_id": profile["user_id"]}, {"name": 1, "email": 1})
    return _profile_response(profile, stored_user or {"_id": profile["user_id"], "name": "", "email": ""})


@router.put("")
async def update_profile(
    name: Optional[str] = Form(None),
    company_name: Optional[str] = Form(None),
    job_role: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    country: Optional[str] = Form(None),
    github_link: Optional[str] = Form(None),
    linkedin_link: Optional[str] = Form(None),
    profile_image: Optional[UploadFile] = File(None),
    profile_banner: Optional[UploadFile] = File(None),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    profile = db["profile"].find_one({"user_id": oid(user["id"])})
    stored_user = db["user"].find_one({"_id": oid(user["id"])})
    if not profile or not stored_user:
        raise HTTPException(status_code=404, detail="Profile or User not found")

    submitted = {
        "company_name": company_name,
        "job_role": job_role,
        "city": city,
        "country": country,
        "github_link": github_link,
        "linkedin_link": linkedin_link,
    }
    update: Dict[str, Any] = {k: v.strip() for k, v in submitted.items() if v and v.strip()}

    if profile_image is not None and profile_image.filename:
        update["profile_image"] = await save_upload(profile_image, "profiles", "profileImage", PROFILE_IMAGE_TYPES)
        remove_upload(profile.get("profile_image"))
    if profile_banner is not None and profile_banner.filename:
        update["profile_banner"] = await save_upload(profile_banner, "profiles", "profileBanner", PROFILE_IMAGE_TYPES)
        remove_upload(profile.get("profile_banner"))

    now = utcnow()
    if update:
        update["updated_at"] = now
        db["profile"].update_one({"_id": profile["_id"]}, {"$set": update})
        profile.update(update)
    if name and name.strip():
        db["user"].update_one({"_id": stored_user["_id"]}, {"$set": {"name": name.strip(), "updated_at": now}})
        stored_user["name"] = name.strip()

    return _profile_response(profile, stored_user)
