"""
Shopping Assistant API Endpoint
"""

from datetime import datetime
from typing import Any, Dict, List, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.assistant.tools import ShoppingAssistant
from marketplace.database.connection import get_db_dependency

router = APIRouter()


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    history: List[Dict[str, str]] = Field(default_factory=list)


class ChatResponse(BaseModel):
    response: Union[str, Dict[str, Any]]
    timestamp: datetime


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, db: AsyncSession = Depends(get_db_dependency)) -> ChatResponse:
    reply = await ShoppingAssistant(db).respond(payload.message, payload.history)
    return ChatResponse(response=reply, timestamp=datetime.utcnow())
