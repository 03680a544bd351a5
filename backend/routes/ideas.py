"""Idea routes: generation and retrieval."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.auth import get_current_user
from backend.dependencies import Services, get_db, get_services
from backend.models import GenerateIdeaRequest, GenerateIdeaResponse, IdeaResponse
from backend.models_db import Account
from backend.services.ideas import generate_idea, get_idea, idea_to_response, list_ideas

router = APIRouter()


@router.post("/ideas/generate", response_model=GenerateIdeaResponse)
async def generate(
    body: GenerateIdeaRequest,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Generate a new startup idea. Consumes one idea from the monthly quota."""
    idea = await generate_idea(
        db, services.generator, services.mailer, services.feed,
        current_user.id, focus=body.focus,
    )
    return GenerateIdeaResponse(id=idea.id, idea=idea)


@router.get("/ideas", response_model=list[IdeaResponse])
async def list_own_ideas(
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [idea_to_response(i) for i in list_ideas(db, current_user.id)]


@router.get("/ideas/{idea_id}", response_model=IdeaResponse)
async def get_own_idea(
    idea_id: str,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return idea_to_response(get_idea(db, current_user.id, idea_id))
