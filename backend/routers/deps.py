import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, Request, status

from core.exceptions import InventoryError, http_error
from services.registry import InventoryServices

logger = logging.getLogger("inventory.api")


def get_services(request: Request) -> InventoryServices:
    return request.app.state.services


@contextmanager
def service_errors(action: str) -> Iterator[None]:
    """Translate domain errors into HTTP responses; anything else becomes a logged 500."""
    try:
        yield
    except InventoryError as e:
        raise http_error(e) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Failed to %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action}",
        ) from e
