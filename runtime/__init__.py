"""
Runtime package for the RepCoach server.

This package contains:
- API layer (FastAPI app factory + coach / insights routes)
- Agents (the generate / accept-or-reject session workflow)
- Stores (live sessions, workout log)
- Streaming (Server-Sent Events channels)
- Models (Pydantic models for requests and sessions)
"""
