"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import auth, parties, party_ledger, trial_balance, user_settings, commission_transactions

router = APIRouter()

# Include authentication endpoints
router.include_router(auth.router)

# Party registry
router.include_router(parties.router)

# Entries, party ledger view, settlements, maintenance
router.include_router(party_ledger.router)

# Brokered client/vendor deals
router.include_router(commission_transactions.router)

# Reports
router.include_router(trial_balance.router)

# Company settings
router.include_router(user_settings.router)
