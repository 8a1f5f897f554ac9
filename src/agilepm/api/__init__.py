"""REST API for managing AgilePM webhooks.

Run with: uvicorn agilepm.api:app --reload
"""

from .app import app, create_app
from .auth import CompanyMember, TokenValidator
from .router import router

__all__ = ["CompanyMember", "TokenValidator", "app", "create_app", "router"]
