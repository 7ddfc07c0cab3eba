from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from studyhub.access import AccessControl
from studyhub.config import (
    BOOTSTRAP_KEY,
    IDENTITY_JWT_AUDIENCE,
    IDENTITY_JWT_SECRET,
    IDENTITY_SERVICE_KEY,
    IDENTITY_TIMEOUT_SECONDS,
    IDENTITY_URL,
    LIST_UNAPPROVED_FILES,
    RATE_LIMIT_PER_MINUTE,
    REDIS_URL,
    STORE_CAS_ATTEMPTS,
    STORE_MAX_RETRIES,
    STORE_RETRY_BASE_DELAY,
)
from studyhub.core.errors import Forbidden, RateLimited
from studyhub.core.rate_limit import RateLimiter
from studyhub.db import engine, ensure_connection
from studyhub.files import FileRegistry
from studyhub.identity import IdentityAuthority, IdentityGateway, bearer_token
from studyhub.services.stats import summarize
from studyhub.store import RecordStore
from studyhub.users import Role, UserDirectory, UserRecord

router = APIRouter()

logger = logging.getLogger("studyhub")

store = RecordStore(
    engine,
    max_retries=STORE_MAX_RETRIES,
    retry_base_delay=STORE_RETRY_BASE_DELAY,
    cas_attempts=STORE_CAS_ATTEMPTS,
)
users = UserDirectory(store)
registry = FileRegistry(store, users)
access = AccessControl(users)
gateway = IdentityGateway(
    IdentityAuthority(IDENTITY_URL, IDENTITY_SERVICE_KEY, IDENTITY_TIMEOUT_SECONDS),
    jwt_secret=IDENTITY_JWT_SECRET,
    audience=IDENTITY_JWT_AUDIENCE,
)
rate_limiter = RateLimiter(RATE_LIMIT_PER_MINUTE, redis_url=REDIS_URL)


class SignupRequest(BaseModel):
    email: str
    password: str
    name: str = ""


class BootstrapRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str
    name: str = ""
    password: str | None = None
    # Promote an identity that already exists instead of registering a new one
    identity_id: str | None = None


class FileCreate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str | None = None
    description: str
    category: str | None = None
    file_name: str = Field(min_length=1)
    file_size: int = Field(ge=0)


async def enforce_rate_limit(request: Request):
    client = request.client.host if request.client else "unknown"
    allowed, retry_after = rate_limiter.hit(client)
    if not allowed:
        logger.warning("event=rate_limited client=%s path=%s", client, request.url.path)
        raise RateLimited(retry_after)


def current_identity(request: Request) -> str:
    return gateway.resolve(bearer_token(request.headers.get("authorization")))


def require_admin(identity_id: str = Depends(current_identity)) -> UserRecord:
    return access.require(identity_id, Role.ADMIN)


def require_bootstrap_key(request: Request):
    """Gate for the out-of-band admin provisioning endpoint."""
    if not BOOTSTRAP_KEY:
        raise Forbidden("Admin bootstrap is disabled on this server")

    key = request.headers.get("x-bootstrap-key")
    if not key or not secrets.compare_digest(key.encode(), BOOTSTRAP_KEY.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing bootstrap key")

    return key


@router.get("/healthz", include_in_schema=False)
def healthz():
    if not ensure_connection(engine):
        raise HTTPException(status_code=503, detail="Database unavailable")
    return {"status": "ok"}


@router.post("/auth/signup", dependencies=[Depends(enforce_rate_limit)])
def signup(payload: SignupRequest):
    identity = gateway.register(payload.email, payload.password, payload.name)
    user = users.create_user(identity["id"], identity["email"], payload.name)
    return {"user": user.dump()}


@router.get("/users/{user_id}")
def get_user(user_id: str, identity_id: str = Depends(current_identity)):
    if user_id != identity_id:
        access.require(identity_id, Role.ADMIN)
    return {"user": users.get_user(user_id).dump()}


@router.get("/files")
def list_files(category: str | None = None, q: str | None = None):
    files = registry.list_files(category=category, query=q, include_unapproved=LIST_UNAPPROVED_FILES)
    return {"files": [f.dump() for f in files]}


@router.get("/files/{file_id}")
def get_file(file_id: str):
    return {"file": registry.get_file(file_id).dump()}


@router.post("/files", dependencies=[Depends(enforce_rate_limit)])
def create_file(payload: FileCreate, identity_id: str = Depends(current_identity)):
    record = registry.create_file(
        identity_id,
        file_name=payload.file_name,
        file_size=payload.file_size,
        title=payload.title,
        description=payload.description,
        category=payload.category,
    )
    return {"file": record.dump()}


@router.post("/files/{file_id}/download", dependencies=[Depends(enforce_rate_limit)])
def record_download(file_id: str):
    downloads = registry.record_download(file_id)
    return {"success": True, "downloads": downloads}


@router.get("/admin/files")
def admin_files(admin: UserRecord = Depends(require_admin)):
    return {"files": [f.dump() for f in registry.list_files()]}


@router.post("/admin/files/{file_id}/approve")
def admin_approve_file(file_id: str, admin: UserRecord = Depends(require_admin)):
    registry.approve_file(file_id)
    return {"success": True}


@router.delete("/admin/files/{file_id}")
def admin_delete_file(file_id: str, admin: UserRecord = Depends(require_admin)):
    registry.delete_file(file_id)
    logger.info("event=admin_delete file_id=%s admin_id=%s", file_id, admin.id)
    return {"success": True}


@router.get("/admin/users")
def admin_users(admin: UserRecord = Depends(require_admin)):
    return {"users": [u.dump() for u in users.list_all()]}


@router.get("/admin/summary")
def admin_summary(admin: UserRecord = Depends(require_admin)):
    return summarize(registry.list_files(), users.list_all())


@router.post("/admin/bootstrap", dependencies=[Depends(require_bootstrap_key)])
def admin_bootstrap(payload: BootstrapRequest):
    if payload.identity_id:
        identity = {"id": payload.identity_id, "email": payload.email}
    elif payload.password:
        identity = gateway.register(payload.email, payload.password, payload.name)
    else:
        raise HTTPException(status_code=400, detail="Either identityId or password is required")
    admin = users.provision_admin(identity["id"], identity["email"], payload.name)
    return {"user": admin.dump()}
