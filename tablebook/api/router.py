from __future__ import annotations

from fastapi import APIRouter

from tablebook.api.routes import admin_blocks, admin_locks, admin_reconciliation, admin_reservations, public, webhooks

api_router = APIRouter()

api_router.include_router(public.router, prefix="/public", tags=["public"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

# Staff
api_router.include_router(admin_blocks.router, prefix="/admin/blocks", tags=["admin-blocks"])
api_router.include_router(admin_locks.router, prefix="/admin/locks", tags=["admin-locks"])
api_router.include_router(admin_reservations.router, prefix="/admin/reservations", tags=["admin-reservations"])
api_router.include_router(admin_reconciliation.router, prefix="/admin/reconciliation", tags=["admin-reconciliation"])
