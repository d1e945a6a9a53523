"""
Pydantic models used by the RepCoach runtime.

Split into:
- session_models: Session + Turn + SessionStatus + UserResponse
- api_models: HTTP request/response schemas
"""


