"""Middleware registration."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from redeem.config import Settings
from redeem.middleware.error_handler import setup_error_handlers
from redeem.middleware.logging import setup_logging
from redeem.middleware.rate_limit import RateLimitMiddleware
from redeem.middleware.request_context import REQUEST_ID_HEADER, RequestContextMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Install logging, error handlers and the middleware stack.

    Last added runs outermost: CORS wraps everything (including 429s from
    the rate limiter), and the request context is bound before the rate
    limiter logs anything.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestContextMiddleware)
    # The payment webhook is server-to-server; browsers only need the client routes
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
