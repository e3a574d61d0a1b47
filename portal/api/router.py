from fastapi import APIRouter
from portal.api import auth, directory, insured_accounts, notifications
from portal.api.requests_modules.router import router as requests_router

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(directory.router, prefix="/directory", tags=["Directory"])
router.include_router(insured_accounts.router, prefix="/insured-accounts", tags=["Insured accounts"])
router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
router.include_router(requests_router, tags=["Requests"])
