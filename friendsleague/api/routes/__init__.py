"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, error translation) lives here; every
sub-router imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

from friendsleague.utils.exceptions import ServiceError

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
if IS_TEST_ENV:
    limiter = Limiter(key_func=get_remote_address)

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = lambda *args, **kwargs: no_op_limit()
else:
    limiter = Limiter(key_func=get_remote_address)

SIGNIN_RATE_LIMIT = "5/minute"


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def service_error_response(e: ServiceError) -> HTTPException:
    """Translate a service-layer error into the matching HTTP error."""
    return HTTPException(status_code=e.status_code, detail=str(e))


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from friendsleague.api.routes.auth import router as auth_router  # noqa: E402
from friendsleague.api.routes.users import router as users_router  # noqa: E402
from friendsleague.api.routes.invitations import router as invitations_router  # noqa: E402
from friendsleague.api.routes.leagues import router as leagues_router  # noqa: E402
from friendsleague.api.routes.events import router as events_router  # noqa: E402
from friendsleague.api.routes.chats import router as chats_router  # noqa: E402
from friendsleague.api.routes.upload import router as upload_router  # noqa: E402
from friendsleague.api.routes.ws import router as ws_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(invitations_router)
router.include_router(leagues_router)
router.include_router(events_router)
router.include_router(chats_router)
router.include_router(upload_router)
router.include_router(ws_router)
