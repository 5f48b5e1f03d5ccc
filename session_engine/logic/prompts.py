# session_engine/logic/prompts.py

"""
LLM prompts used by the session engine.
"""

# --- Session Boundary Classification ---

BOUNDARY_CLASSIFICATION_PROMPT = """
You are classifying activity transitions for a productivity tracker.

Previous activity: {previous}
Current activity: {current}

Should these be in the SAME focus session or DIFFERENT sessions?

Consider:
- Development work (coding, terminal, docs) = typically same session
- Research (stackoverflow, docs, tutorials) = typically same session
- Distractions (social media, entertainment) = different session
- Communication (email, slack, meetings) = different session

Return JSON only:
{{
  "sameSession": true/false,
  "confidence": 0.0-1.0,
  "reason": "brief explanation",
  "suggestedCategory": "development|design|communication|research|distraction|other"
}}
"""
