"""Shared Pydantic schemas for mentor-meter."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "mentor-meter"


class ErrorResponse(BaseModel):
    error: str
    code: str = ""
    detail: str = ""
    retryable: bool = False
