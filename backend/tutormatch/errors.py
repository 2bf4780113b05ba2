"""Exceptions raised while assembling the application."""


class ConstructionError(RuntimeError):
    """The route table or its collaborators could not be assembled.

    Raised at startup only: a missing controller action, a missing status
    code or an overlapping route pattern. Requests are never served by a
    partially built router.
    """
