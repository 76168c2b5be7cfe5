"""
Lenient JSON body parsing for the dashboard API.
"""

from typing import Optional, Type, TypeVar

from fastapi import Request
from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


class DomainPayload(BaseModel):
    siteId: Optional[str] = None
    hostname: Optional[str] = None
    id: Optional[str] = None


class SitePayload(BaseModel):
    id: Optional[str] = None
    subdomain: Optional[str] = None


async def read_payload(request: Request, model: Type[M]) -> M:
    """
    Parse the request body into model.

    A missing, malformed or mistyped body yields an empty model, so the
    handlers answer with their own "missing field" errors.
    """
    try:
        data = await request.json()
    except ValueError:
        return model()
    if not isinstance(data, dict):
        return model()
    try:
        return model.model_validate(data)
    except ValidationError:
        return model()
