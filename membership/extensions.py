"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
The identity and Stripe clients follow the same pattern and are passed
into service functions explicitly.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from membership.services.identity_service import IdentityClient
from membership.services.stripe_service import StripeProcessor

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit — we apply per-route
    storage_uri="memory://",
)
identity = IdentityClient()
processor = StripeProcessor()


@login_manager.request_loader
def load_member_from_request(request):
    """Resolve the bearer credential to a Member. Imports lazily to avoid circular deps.

    Returning None makes Flask-Login call the unauthorized handler, which
    raises Unauthenticated.
    """
    from membership.services.member_service import resolve_credential

    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    if not token:
        return None
    return resolve_credential(identity, token)


@login_manager.unauthorized_handler
def unauthorized():
    from membership.errors import Unauthenticated

    raise Unauthenticated("Invalid or missing credentials")
