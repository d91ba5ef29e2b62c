"""
Stripe credential resolution.

Billing itself is handled elsewhere; this module only answers "which
keys do we use?" with a three-tier chain:

1. STRIPE_SECRET_KEY and STRIPE_PUBLISHABLE_KEY, when both are set.
2. Placeholder test keys, outside production only. Every use is
   logged as a warning so a missing key doesn't go unnoticed.
3. Otherwise BillingConfigurationError.

Clients are built fresh on every call so rotated keys take effect
without a restart.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import stripe

from ...config.settings import Settings

logger = logging.getLogger(__name__)

PLACEHOLDER_SECRET_KEY = "sk_test_dummy"
PLACEHOLDER_PUBLISHABLE_KEY = "pk_test_dummy"


class BillingConfigurationError(Exception):
    """Raised when no usable Stripe credentials are configured."""
    pass


class StripeCredentialSource(Enum):
    ENVIRONMENT = "environment"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class StripeCredentials:
    secret_key: str
    publishable_key: str
    source: StripeCredentialSource

    @property
    def is_placeholder(self) -> bool:
        return self.source == StripeCredentialSource.PLACEHOLDER


def resolve_stripe_credentials(settings: Settings) -> StripeCredentials:
    """Return the first usable pair of Stripe keys."""
    if settings.stripe_secret_key and settings.stripe_publishable_key:
        return StripeCredentials(
            secret_key=settings.stripe_secret_key,
            publishable_key=settings.stripe_publishable_key,
            source=StripeCredentialSource.ENVIRONMENT,
        )

    if not settings.is_production:
        logger.warning(
            "Stripe credentials not configured; using placeholder test keys",
            extra={"environment": settings.environment}
        )
        return StripeCredentials(
            secret_key=PLACEHOLDER_SECRET_KEY,
            publishable_key=PLACEHOLDER_PUBLISHABLE_KEY,
            source=StripeCredentialSource.PLACEHOLDER,
        )

    raise BillingConfigurationError(
        "Stripe credentials not found. Set STRIPE_SECRET_KEY and STRIPE_PUBLISHABLE_KEY."
    )


def get_stripe_client(settings: Settings) -> stripe.StripeClient:
    credentials = resolve_stripe_credentials(settings)
    return stripe.StripeClient(credentials.secret_key)


def get_stripe_publishable_key(settings: Settings) -> str:
    return resolve_stripe_credentials(settings).publishable_key
