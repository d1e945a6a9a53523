"""
Storage abstractions for the RepCoach runtime.

Includes:
- SessionStore: in-memory live sessions with idle expiry
- WorkoutStore: the user's workout log (history source + commit target)
"""
