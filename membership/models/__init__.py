# Models package — import all models here so Alembic can discover them.

from membership.models.member import Member  # noqa: F401
from membership.models.billing import (  # noqa: F401
    Invoice,
    StripeCustomer,
    StripePrice,
    Subscription,
)
from membership.models.stripe_event import StripeEvent  # noqa: F401
