"""Router that serves every path with and without a trailing slash."""

from typing import Any, Callable

from fastapi import APIRouter
from fastapi.types import DecoratedCallable


class TrailingSlashRouter(APIRouter):
    """APIRouter that registers each endpoint twice instead of redirecting.

    ``/payments`` and ``/payments/`` both reach the same handler, so webhook
    deliveries and POST bodies are never lost to a 307. Only the form without
    the trailing slash appears in the OpenAPI schema.
    """

    def api_route(
        self, path: str, *, include_in_schema: bool = True, **kwargs: Any
    ) -> Callable[[DecoratedCallable], DecoratedCallable]:
        """Register ``path`` and ``path + "/"`` for the decorated endpoint.

        Args:
            path (str): The endpoint path, with or without a trailing slash
            include_in_schema (bool): Whether the canonical path is documented
            **kwargs: Passed through to ``APIRouter.api_route``

        Returns:
            Callable[[DecoratedCallable], DecoratedCallable]: The registering decorator
        """
        canonical = path[:-1] if path.endswith("/") else path

        add_canonical = super().api_route(
            canonical, include_in_schema=include_in_schema, **kwargs
        )
        add_slashed = super().api_route(canonical + "/", include_in_schema=False, **kwargs)

        def decorator(func: DecoratedCallable) -> DecoratedCallable:
            add_slashed(func)
            return add_canonical(func)

        return decorator
