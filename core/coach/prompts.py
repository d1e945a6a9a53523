# Prompt templates used by the workout coach and the insights assistant.


PROMPT_WORKOUT_TASK = """
You are a fitness trainer. Generate a balanced full-body workout with 6
exercises covering legs, core, and upper body.
""".strip()


PROMPT_WORKOUT_FORMAT = """
Return ONLY a JSON object with this exact structure:

{"exercises": [{"name": "Exercise Name", "reps": number, "weight": number}]}

"weight" may be omitted for bodyweight exercises. Do not include any other
text, explanation, or markdown formatting.
""".strip()


PROMPT_WORKOUT_HISTORY = """
Recent workout history:
{history}

Based on this history, suggest progressive overload where appropriate:
build on the most recent values instead of repeating them.
""".strip()


PROMPT_INSIGHTS_SYSTEM = """
You are a knowledgeable workout analysis assistant. Analyze the workout data
provided and answer the user's question with helpful insights. Be specific,
use data from their workouts, and provide actionable advice.
""".strip()


PROMPT_INSIGHTS_QUESTION = """
Workout History:
{history}

Question: {question}
""".strip()


NO_WORKOUT_DATA = "No workout data available for the selected timeframe."
