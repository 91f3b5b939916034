# Routers package
from . import (
    subscription_router,
    webhook_router,
)

__all__ = [
    "subscription_router",
    "webhook_router",
]
