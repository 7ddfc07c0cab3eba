import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studyhub.api.routes import router
from studyhub.config import CORS_ORIGINS, LIST_UNAPPROVED_FILES
from studyhub.core.exceptions import register_exception_handlers
from studyhub.db import init_db

app = FastAPI(title="StudyHub File Registry", version="1.0.0")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("studyhub")

origins = [origin.strip() for origin in CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()
logger.info("event=startup list_unapproved_files=%s", LIST_UNAPPROVED_FILES)

app.include_router(router)
register_exception_handlers(app)
