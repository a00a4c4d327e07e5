"""
Admin key gate for the /admin routes.
User authentication is handled upstream; this only protects operator actions.
"""

from fastapi import Security, HTTPException, status
from fastapi.security import APIKeyHeader
import hmac
import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()

ADMIN_KEY_HEADER = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def get_admin_key() -> str:
    """Load the admin key from the environment"""
    key = os.getenv("ADMIN_KEY")
    if not key:
        # Development fallback (never use in production)
        if os.getenv("ENVIRONMENT") == "development":
            return "dev-admin-key-insecure"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin access is not configured. Set ADMIN_KEY in environment",
        )
    return key


async def verify_admin_key(admin_key: str = Security(ADMIN_KEY_HEADER)) -> str:
    """
    Verify the admin key header

    Usage in FastAPI routes:
        @app.post("/admin/auto-resolve")
        async def admin_route(admin: str = Depends(verify_admin_key)):
            ...
    """
    if not admin_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access denied. Include 'X-Admin-Key' header.",
        )

    if not hmac.compare_digest(admin_key, get_admin_key()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access denied",
        )

    return "admin"
