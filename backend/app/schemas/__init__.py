"""Pydantic schemas for the maintenance desk API."""

from app.schemas.auth import *
from app.schemas.maintenance import *
