"""Pydantic schemas for LuxGate collaborator payloads."""
