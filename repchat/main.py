from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from repchat.config import settings
from repchat.database import get_db
from repchat.logging_config import setup_logging
from repchat.models import Conversation, Message, Sale
from repchat.routers import admin, chat, webhooks
from repchat.services.rep_directory import RepDirectory

setup_logging(settings.log_level)

app = FastAPI(
    title="RepChat API",
    description="Customer chat with AI assistant, rep handoff and sales commission tracking",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.rep_directory = RepDirectory()

app.include_router(chat.router)
app.include_router(webhooks.router)
app.include_router(admin.router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "sales": db.query(Sale).count(),
    }
