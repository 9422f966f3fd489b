"""Request dependencies shared by the API routers."""

from fastapi import Request

from xero_accounting.xero.client import XeroClient


def get_client(request: Request) -> XeroClient:
    """The XeroClient created in the app lifespan."""
    return request.app.state.client
