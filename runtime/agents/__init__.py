"""
Agents used by the RepCoach runtime.

GenerationWorkflow drives a session through generation, presentation and
accept / reject, for both the workout coach and the insights assistant.
"""
