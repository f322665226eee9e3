"""Application package for the TOEFL practice backend.

This package exposes the service, repository, provider client and model
modules used by the FastAPI application. Individual modules contain the
concrete implementations and documentation.
"""
