"""
Contact API Routes
HTTP endpoints for ingesting, listing, searching and labeling contacts.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from rolodex.auth.verify import auth_dependency, require_user_id
from rolodex.db.helpers import DatabaseError
from rolodex.infrastructure.observability.logging import get_logger
from rolodex.models.api.contact_request import IngestContactRequest
from rolodex.models.api.contact_response import (
    ContactListResponse,
    IngestContactResponse,
    SideEffectResponse,
)
from rolodex.models.contact import ContactLabel
from rolodex.repositories.contact_repository import (
    LabelLinkExistsError,
    MalformedIdError,
    RecordNotFoundError,
)
from rolodex.routes.dependencies import get_contact_gateway
from rolodex.services.contact_gateway import ContactGateway, ContactValidationError
from rolodex.services.extraction_service import ExtractionRequestError
from rolodex.services.openai_service import ModelNotConfiguredError

logger = get_logger(__name__)

router = APIRouter(prefix="/contacts", tags=["contacts"])


STORE_REJECTIONS = {
    RecordNotFoundError: status.HTTP_404_NOT_FOUND,
    LabelLinkExistsError: status.HTTP_409_CONFLICT,
    MalformedIdError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _store_error(operation: str, user_id: str, error: DatabaseError) -> HTTPException:
    for error_type, status_code in STORE_REJECTIONS.items():
        if isinstance(error, error_type):
            logger.info(
                "Contact store rejected request",
                operation=operation,
                user_id=user_id,
                status_code=status_code,
                error=str(error),
            )
            return HTTPException(status_code=status_code, detail=str(error))

    logger.error(
        "Contact store operation failed",
        operation=operation,
        user_id=user_id,
        error=str(error),
        db_operation=error.operation,
    )
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Contact store unavailable",
    )


@router.get("", response_model=ContactListResponse)
async def list_contacts(
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    """All contacts for the authenticated user, newest first."""
    user_id = require_user_id(claims)

    try:
        contacts = await gateway.refresh_contacts(user_id)
    except DatabaseError as e:
        raise _store_error("list_contacts", user_id, e) from e

    return ContactListResponse(contacts=contacts, count=len(contacts))


@router.post("", response_model=IngestContactResponse, status_code=status.HTTP_201_CREATED)
async def ingest_contact(
    request: IngestContactRequest,
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    """Create a contact from a free-text note."""
    user_id = require_user_id(claims)

    try:
        result = await gateway.ingest(request.text, user_id)
    except ContactValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except ExtractionRequestError as e:
        logger.error("Contact extraction unavailable", user_id=user_id, error=e.api_error)
        if isinstance(e.__cause__, ModelNotConfiguredError):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Language model client not configured",
            ) from e
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Contact extraction failed"
        ) from e
    except DatabaseError as e:
        raise _store_error("ingest_contact", user_id, e) from e

    return IngestContactResponse(
        contact=result.contact,
        side_effects=[
            SideEffectResponse(name=outcome.name, ok=outcome.ok, error=outcome.error)
            for outcome in result.side_effects
        ],
    )


@router.get("/search", response_model=ContactListResponse)
async def search_contacts(
    q: str = Query(..., min_length=1, max_length=500, description="Free-text query"),
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    """Direct match first, relevance-ranked fallback when nothing matches directly."""
    user_id = require_user_id(claims)

    try:
        contacts = await gateway.search(q, user_id)
    except DatabaseError as e:
        raise _store_error("search_contacts", user_id, e) from e

    return ContactListResponse(contacts=contacts, count=len(contacts))


@router.post(
    "/{contact_id}/labels/{label_id}",
    response_model=ContactLabel,
    status_code=status.HTTP_201_CREATED,
)
async def assign_label(
    contact_id: str,
    label_id: str,
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    user_id = require_user_id(claims)

    try:
        return await gateway.assign_label(contact_id, label_id, user_id)
    except DatabaseError as e:
        raise _store_error("assign_label", user_id, e) from e


@router.delete("/{contact_id}/labels/{label_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_label(
    contact_id: str,
    label_id: str,
    claims: dict = Depends(auth_dependency),
    gateway: ContactGateway = Depends(get_contact_gateway),
):
    user_id = require_user_id(claims)

    try:
        await gateway.remove_label(contact_id, label_id, user_id)
    except DatabaseError as e:
        raise _store_error("remove_label", user_id, e) from e
