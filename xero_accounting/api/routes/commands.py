"""FastAPI routes exposing the command set over HTTP."""

from typing import Any, Optional

import httpx
import structlog
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from xero_accounting.api.dependencies import get_client
from xero_accounting.commands import (
    UnknownCommandError,
    execute_command,
    format_validation_error,
    list_tools,
)
from xero_accounting.xero.client import XeroClient
from xero_accounting.xero.errors import XeroAPIError, XeroError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/commands", tags=["commands"])


@router.get("")
async def list_commands():
    """List available commands with their descriptions."""
    return {"commands": list_tools()}


@router.post("/{name}")
async def run_command(
    name: str,
    arguments: Optional[dict[str, Any]] = Body(default=None),
    no_cache: bool = Query(False, description="Bypass the cache for this call"),
    client: XeroClient = Depends(get_client),
):
    """Run a command with a JSON object of arguments.

    Unknown commands return 404 and invalid arguments 422. Xero API failures
    and unreachable Xero return 502; other Xero errors (configuration, auth,
    lookups) return 400.
    """
    try:
        result = await execute_command(client, name, arguments, bypass_cache=no_cache)
    except UnknownCommandError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    except ValidationError as e:
        return JSONResponse(
            status_code=422,
            content={"error": f"Invalid arguments for {name}: {format_validation_error(e)}"},
        )
    except XeroAPIError as e:
        logger.warning("Xero API call failed", command=name, status_code=e.status_code)
        return JSONResponse(
            status_code=502,
            content={"error": str(e), "xero_status": e.status_code},
        )
    except XeroError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except httpx.HTTPError as e:
        logger.warning("Xero request failed", command=name, error=str(e))
        return JSONResponse(status_code=502, content={"error": f"Xero request failed: {e}"})

    return {"command": name, "result": result}
