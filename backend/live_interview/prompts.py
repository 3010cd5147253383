# ----------- Style Presets -----------

STYLE_PROMPTS = {
    "professional": "Provide a professional, well-structured response suitable for a job interview.",
    "conversational": "Provide a conversational, friendly response that shows personality.",
    "detailed": "Provide a comprehensive, detailed response with examples and explanations.",
    "concise": "Provide a brief, to-the-point response.",
}

SYSTEM_PROMPT = """
You are an interview assistant helping a candidate during a live interview.
Be accurate, specific, and grounded in what the candidate actually said.
Do not invent experience the transcript does not mention.
"""

JSON_SYSTEM_PROMPT = "You are a strict JSON generator. Output JSON only."

# ----------- Question Prompts -----------

SINGLE_QUESTION_PROMPT = """
Based on this interview content, generate ONE intelligent and relevant interview question.

Interview content: "{text}"

Rules:
- Generate a question that digs deeper into the topic discussed
- Make it specific and relevant to what was just said
- Focus on technical details, experiences, or challenges mentioned
- Don't ask generic questions like "Can you elaborate" or "Tell me more"

Return ONLY a JSON object with this exact structure (no markdown, no extra text):
{{
  "id": "unique_id",
  "text": "The intelligent interview question",
  "category": "technical|behavioral|general",
  "suggestedAnswer": "A brief suggested answer based on the content",
  "confidence": 0.85
}}
"""

QUESTIONS_PROMPT = """
Analyze this interview transcript and generate {max_questions} relevant interview questions.

Transcript: "{transcript}"

Categories to focus on: {categories}

Return a JSON array where each item has this structure:
{{
  "id": "unique_id",
  "text": "The interview question",
  "category": "technical|behavioral|general",
  "suggestedAnswer": "A brief suggested answer based on the transcript",
  "confidence": 0.85
}}

Make sure the response is valid JSON only, no additional text.
"""

# ----------- Answer Prompts -----------

ANSWER_PROMPT = """
Answer this interview question: "{question}"

Context from the interview: "{context}"

Style: {style_prompt}

Return ONLY a JSON object with this exact structure (no markdown, no extra text):
{{
  "answer": "The comprehensive answer",
  "confidence": 0.92,
  "sources": ["relevant sources or references"],
  "keyPoints": ["key point 1", "key point 2"],
  "estimatedDuration": "2-3 minutes"
}}
"""

TRANSCRIPT_ANSWER_PROMPT = """
Based on this interview transcript, provide a helpful response or answer.

Transcript: "{transcript}"

Style: {style_prompt}

Provide a natural, conversational response that addresses the content of the transcript.
"""

# ----------- Analysis Prompts -----------

ANALYSIS_PROMPTS = {
    "summary": "Summarize the key points the candidate made in a few short bullets.",
    "insights": "List insights about the candidate's strengths, gaps, and experience level.",
    "suggestions": "Suggest concrete improvements the candidate could make to their answers.",
}

ANALYSIS_PROMPT = """
Analyze this interview transcript.

Transcript: "{transcript}"

Task: {task_prompt}

Return ONLY a JSON object with this exact structure (no markdown, no extra text):
{{
  "analysis": "The analysis text",
  "keyPoints": ["point 1", "point 2"]
}}
"""


def style_prompt(style: str) -> str:
    return STYLE_PROMPTS.get(str(style or "").strip().lower(), STYLE_PROMPTS["professional"])


def build_transcript_answer_prompt(transcript: str, style: str) -> str:
    return TRANSCRIPT_ANSWER_PROMPT.format(transcript=transcript, style_prompt=style_prompt(style))
