"""
Contact Identity - API Router

Provides the request boundary for identity reconciliation:
- POST /identify - Resolve an (email, phoneNumber) observation to its cluster
- GET /identity/status - Module status
"""

import logging
from typing import Optional, List, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from config import get_settings
from sentry_integration import capture_exception
from utils.validation_errors import raise_missing_parameter, raise_internal_error

from .errors import IdentityValidationError, StorageError, ClusterIntegrityError
from .service import IdentityService, get_identity_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Identity"])


# ==================== REQUEST/RESPONSE MODELS ====================

class IdentifyRequest(BaseModel):
    """Request model for identify; at least one field is required"""
    email: Optional[str] = Field(None, max_length=255, description="Email address")
    phoneNumber: Optional[Union[str, int]] = Field(None, description="Phone number (text or digits)")

    @field_validator('phoneNumber')
    @classmethod
    def phone_as_text(cls, v):
        if v is None:
            return v
        v = str(v)
        if len(v) > 50:
            raise ValueError('phoneNumber must be at most 50 characters')
        return v


class ContactClusterResponse(BaseModel):
    """Resolved cluster"""
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class IdentifyResponse(BaseModel):
    contact: ContactClusterResponse


# ==================== ENDPOINTS ====================

@router.get("/identity/status")
async def get_identity_status():
    """
    Get identity module status.
    """
    return {
        "status": "ok",
        "module": "identity",
        "version": get_settings().API_VERSION,
    }


@router.post("/identify", response_model=IdentifyResponse)
async def identify(
    request: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Resolve a contact observation.

    **Rules:**
    - No existing match: a new primary contact is created
    - Match with new information: a secondary contact is appended
    - Match spanning several clusters: the oldest primary wins, the others
      become its secondaries
    """
    try:
        view = await service.identify(
            email=request.email,
            phone_number=request.phoneNumber
        )
    except IdentityValidationError as e:
        raise_missing_parameter(e.parameter, str(e))
    except (StorageError, ClusterIntegrityError) as e:
        logger.error(f"Identify failed: {type(e).__name__}: {e}", exc_info=True)
        capture_exception(e, operation="identify")
        if get_settings().is_production:
            raise_internal_error()
        raise_internal_error(str(e), type(e).__name__)

    return {"contact": view.to_dict()}
