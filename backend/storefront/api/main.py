"""
API router

Collects the route modules into the router mounted by ``storefront.main``
under ``settings.API_V1_STR``:

- payments: create, charge, verify, webhook, notify, success, cancel
- utils: health check
"""
from fastapi import APIRouter

from storefront.api.routes import payments, utils

api_router = APIRouter()

api_router.include_router(payments.router)  # /payments/*
api_router.include_router(utils.router)  # /utils/*
