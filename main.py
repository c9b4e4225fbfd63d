import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

import mindmap
import profiles
import users
import workspaces
from config import settings
from database import ensure_indexes, get_db
from errors import register_exception_handlers
from logging_config import setup_logging

setup_logging()

logger = logging.getLogger(__name__)

settings.upload_dir.mkdir(parents=True, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db_provider = app.dependency_overrides.get(get_db, get_db)
    try:
        ensure_indexes(db_provider())
        logger.info("MongoDB indexes ensured")
    except PyMongoError as exc:
        logger.warning("Failed to ensure MongoDB indexes: %s", exc)
    yield


app = FastAPI(title="Cyclops API", lifespan=lifespan)
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/uploads", StaticFiles(directory=str(settings.upload_dir)), name="uploads")

app.include_router(users.router)
app.include_router(profiles.router)
app.include_router(workspaces.router)
app.include_router(mindmap.router)


# -----------------------------
# Health/Test
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "Cyclops API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": settings.database_name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except PyMongoError as exc:
        logger.warning("Database check failed: %s", exc)
        response["database"] = f"Error: {str(exc)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)
