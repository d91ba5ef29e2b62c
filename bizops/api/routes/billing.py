"""
Billing configuration endpoint.

The frontend needs the Stripe publishable key to render checkout.
Which key it gets is decided by the credential chain in
infrastructure.billing.stripe_client.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...infrastructure.billing.stripe_client import (
    BillingConfigurationError,
    resolve_stripe_credentials,
)
from ..dependencies import AuthenticatedClient, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter()


class BillingConfigResponse(BaseModel):
    publishable_key: str = Field(description="Stripe publishable key")
    test_mode: bool = Field(description="True when placeholder keys are in use")


@router.get(
    "/config",
    response_model=BillingConfigResponse,
    status_code=status.HTTP_200_OK,
    summary="Get client-side billing configuration",
)
async def get_billing_config(
    api_key: AuthenticatedClient,
    settings: SettingsDep,
) -> BillingConfigResponse:
    try:
        credentials = resolve_stripe_credentials(settings)
    except BillingConfigurationError as e:
        logger.error("Billing not configured", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not configured",
        )

    return BillingConfigResponse(
        publishable_key=credentials.publishable_key,
        test_mode=credentials.is_placeholder,
    )
