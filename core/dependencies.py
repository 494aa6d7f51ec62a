from fastapi import Header, HTTPException, Request, status

from core.settings import Settings

# Settings singleton
_settings = None


def get_settings() -> Settings:
    """Dependency that provides application settings."""
    assert (
        _settings is not None
    ), "Settings not initialized. Make sure startup() was called."
    return _settings


def init_settings():
    """Initialize settings singleton."""
    global _settings
    _settings = Settings()


def clear_settings():
    """Clear settings singleton."""
    global _settings
    _settings = None


def get_rate_cache(request: Request):
    """Rate cache built during application startup."""
    return request.app.state.rate_cache


def get_payout_provider(request: Request):
    """Payout provider built during application startup."""
    return request.app.state.payout_provider


def get_current_merchant(x_merchant_id: str | None = Header(default=None)) -> str:
    """Merchant identity forwarded by the authenticating gateway."""
    if not x_merchant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Merchant identity missing",
        )
    return x_merchant_id
