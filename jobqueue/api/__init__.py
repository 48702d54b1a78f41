"""
API module.
Contains the FastAPI application and routes.
"""
