"""
Server-push streaming for the RepCoach runtime.

Includes:
- StreamChannel: push-only SSE sink bound to one session, with heartbeats
- StreamEvent / StreamEventType: the event envelope written on the wire
"""
