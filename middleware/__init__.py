"""Middleware components for the CogniClear API."""

from middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
