"""
Label API Routes
"""

from fastapi import APIRouter, Depends, HTTPException, status

from rolodex.auth.verify import auth_dependency, require_user_id
from rolodex.db.helpers import DatabaseError
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.api.contact_request import CreateLabelRequest
from rolodex.models.api.contact_response import LabelListResponse
from rolodex.models.contact import Label
from rolodex.repositories.contact_repository import LabelExistsError
from rolodex.routes.dependencies import get_contact_gateway
from rolodex.services.contact_gateway import ContactGateway, ContactValidationError

logger = get_logger(__name__)

router = APIRouter(prefix="/labels", tags=["labels"])


@router.get("", response_model=LabelListResponse)
async def list_labels(
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    """Labels for the authenticated user in name order."""
    user_id = require_user_id(claims)

    try:
        labels = await gateway.refresh_labels(user_id)
    except DatabaseError as e:
        logger.error("Error listing labels", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Contact store unavailable"
        ) from e

    return LabelListResponse(labels=labels)


@router.post("", response_model=Label, status_code=status.HTTP_201_CREATED)
async def create_label(
    request: CreateLabelRequest,
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    user_id = require_user_id(claims)

    try:
        return await gateway.create_label(request.name, user_id)
    except ContactValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except LabelExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except DatabaseError as e:
        logger.error("Error creating label", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Contact store unavailable"
        ) from e
