"""Application package for the tutor/student matching backend.

This package exposes the router, controller, repository and model
modules used by the FastAPI application. `main.create_app` is the place
where they are put together.
"""
