"""Symbolic names for the HTTP status codes the application answers with."""

from types import MappingProxyType

STATUS_CODES = MappingProxyType({
    "OK": 200,
    "CREATED": 201,
    "FOUND": 302,
    "BAD_REQUEST": 400,
    "UNAUTHORIZED": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "METHOD_NOT_ALLOWED": 405,
    "CONFLICT": 409,
    "INTERNAL_SERVER_ERROR": 500,
})
