# docmind/api/api_router.py
from fastapi import APIRouter

from docmind.api.v1 import chat, files, knowledge

api_router = APIRouter()
api_router.include_router(files.router, prefix="/v1/files", tags=["files"])
api_router.include_router(knowledge.router, prefix="/v1/knowledge", tags=["knowledge"])
api_router.include_router(chat.router, prefix="/v1/chat", tags=["chat"])
