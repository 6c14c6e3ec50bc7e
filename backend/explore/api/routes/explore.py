"""
API routes for the liked-you feeds and decisions
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from explore.core.database import get_db
from explore.core.logging_config import LoggingConfig
from explore.services.decision_service import DecisionService, LikedYouPage

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/explore", tags=["explore"])


class LikerResponse(BaseModel):
    """A user who liked the recipient"""
    actor_id: str
    unix_timestamp: int


class ListLikedYouResponse(BaseModel):
    """One page of likers"""
    likers: List[LikerResponse]
    next_pagination_token: Optional[str] = None


class CountLikedYouResponse(BaseModel):
    """Total likers"""
    count: int


class PutDecisionRequest(BaseModel):
    """Like or pass of one user about another"""
    actor_user_id: str = Field(..., min_length=1, max_length=255)
    recipient_user_id: str = Field(..., min_length=1, max_length=255)
    liked_recipient: bool


class PutDecisionResponse(BaseModel):
    """Whether the decision completed a mutual like"""
    mutual_likes: bool


def get_decision_service(db: Session = Depends(get_db)) -> DecisionService:
    return DecisionService(db)


def _to_response(page: LikedYouPage) -> ListLikedYouResponse:
    return ListLikedYouResponse(
        likers=[
            LikerResponse(actor_id=liker.actor_id, unix_timestamp=liker.unix_timestamp)
            for liker in page.likers
        ],
        next_pagination_token=page.next_pagination_token,
    )


# Handlers are plain functions: FastAPI runs them in the threadpool, so a
# blocking store call never stalls the event loop.

@router.get("/liked-you", response_model=ListLikedYouResponse)
def list_liked_you(
    recipient_user_id: str = Query(..., min_length=1, max_length=255, description="Recipient user ID"),
    pagination_token: Optional[str] = Query(None, description="Token from a previous page"),
    service: DecisionService = Depends(get_decision_service),
):
    """List users who liked the recipient, most recent first"""
    return _to_response(service.list_liked_you(recipient_user_id, pagination_token))


@router.get("/liked-you/new", response_model=ListLikedYouResponse)
def list_new_liked_you(
    recipient_user_id: str = Query(..., min_length=1, max_length=255, description="Recipient user ID"),
    pagination_token: Optional[str] = Query(None, description="Token from a previous page"),
    service: DecisionService = Depends(get_decision_service),
):
    """List users who liked the recipient and have not been liked back"""
    return _to_response(service.list_new_liked_you(recipient_user_id, pagination_token))


@router.get("/liked-you/count", response_model=CountLikedYouResponse)
def count_liked_you(
    recipient_user_id: str = Query(..., min_length=1, max_length=255, description="Recipient user ID"),
    service: DecisionService = Depends(get_decision_service),
):
    """Count users who liked the recipient"""
    return CountLikedYouResponse(count=service.count_liked_you(recipient_user_id))


@router.put("/decisions", response_model=PutDecisionResponse)
def put_decision(
    request: PutDecisionRequest,
    service: DecisionService = Depends(get_decision_service),
):
    """Record a like or pass; reports whether it created a mutual like"""
    mutual = service.put_decision(
        request.actor_user_id,
        request.recipient_user_id,
        request.liked_recipient,
    )
    return PutDecisionResponse(mutual_likes=mutual)
