"""
API Layer for the Face Authentication System

This package provides the FastAPI-based API layer that exposes:
- WebSocket endpoint for the real-time liveness challenge
- REST endpoints for enrollment, authentication, owner management and health checks
"""
