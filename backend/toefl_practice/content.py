"""Generative-content client for practice tasks and writing correction.

The provider is any OpenAI-compatible chat-completions endpoint (by
default the Lovable AI gateway in front of Gemini). Every request asks for
a JSON object response; the parsed object is returned to the caller.
"""

import json
import logging
import re
from typing import Optional

import httpx
from pydantic import ValidationError

from .config import settings
from .errors import ConfigurationError, ProviderError
from .schemas import GeneratedQuestion
from .utils.provider_stats import track_call

logger = logging.getLogger("toefl.content")

_QUESTION_SHAPE = """{
      "text": "Question text",
      "options": ["A) ...", "B) ...", "C) ...", "D) ..."],
      "correctAnswer": 0,
      "explanation": "Why this answer is correct",
      "type": "%s"
    }"""

LECTURE_PROMPT = """You are an expert TOEFL test creator. Generate a high-quality academic lecture following this exact structure:

REQUIREMENTS:
- Length: 650-750 words
- Duration: ~4-5 minutes when spoken
- Style: Academic, clear, informative
- Include: Introduction, body with examples/details, conclusion
- Topics: Science, history, art, technology, social sciences

Generate ONLY valid JSON with this exact structure:
{
  "title": "Lecture title",
  "transcript": "Full lecture text (650-750 words)",
  "questions": [
    %s
  ]
}

Create 6 questions covering:
- 2 gist/main idea questions
- 2 detail questions
- 1 inference question
- 1 organization/purpose question""" % (_QUESTION_SHAPE % "gist|detail|inference|organization")

CONVERSATION_PROMPT = """You are an expert TOEFL test creator. Generate a realistic campus conversation following this exact structure:

REQUIREMENTS:
- Length: 12-25 dialogue turns
- Duration: ~2.5-3.5 minutes when spoken
- Participants: Student + Professor/Advisor/Staff
- Topics: Academic issues, assignments, campus life
- Natural dialogue with realistic problems/solutions

CRITICAL: Use newline characters (\\n) for line breaks in the transcript. DO NOT use HTML tags like <br> or <br/>.

Generate ONLY valid JSON with this exact structure:
{
  "title": "Conversation title",
  "transcript": "Full conversation with speaker labels, one line per turn. Example: 'Student: Hello professor\\nProfessor: Hi, how can I help you?\\n'",
  "questions": [
    %s
  ]
}

Create 5 questions covering:
- 1 gist/main topic question
- 2 detail questions
- 1 inference question
- 1 purpose/attitude question""" % (_QUESTION_SHAPE % "gist|detail|inference|purpose")

READING_PROMPT = """You are an expert TOEFL test creator. Generate an academic reading passage following this exact structure:

REQUIREMENTS:
- Length: 650-750 words in 5-7 paragraphs
- Style: University textbook, formal and information-dense
- Topics: Natural sciences, history, social sciences, arts

Separate paragraphs with newline characters (\\n). Do not number them.

Generate ONLY valid JSON with this exact structure:
{
  "title": "Passage title",
  "passage": "Full passage text",
  "questions": [
    %s
  ]
}

Create 10 questions covering:
- 3 factual information questions
- 2 vocabulary questions
- 2 inference questions
- 1 negative factual question
- 1 rhetorical purpose question
- 1 sentence simplification question""" % (_QUESTION_SHAPE % "factual|vocabulary|inference|negative-factual|purpose|simplification")

INTEGRATED_WRITING_PROMPT = """You are an expert TOEFL test creator. Generate a TOEFL Integrated Writing task (Task 1).

REQUIREMENTS:
- A reading passage of 230-300 words presenting three points on an academic topic
- A lecture summary of 230-300 words in which a professor challenges each of the three points
- The standard task question asking the test taker to summarize the lecture and explain how it casts doubt on the reading

Generate ONLY valid JSON with this exact structure:
{
  "title": "Task title",
  "readingPassage": "Reading passage, paragraphs separated by \\n",
  "lectureSummary": "Lecture text, paragraphs separated by \\n",
  "question": "Summarize the points made in the lecture, being sure to explain how they challenge the specific points made in the reading passage."
}"""

INDEPENDENT_WRITING_PROMPT = """You are an expert TOEFL test creator. Generate a TOEFL Independent Writing task (Task 2).

REQUIREMENTS:
- An opinion question (agree/disagree, preference, or comparison) on a general topic
- A model response of 300-350 words with introduction, two body paragraphs and conclusion

Generate ONLY valid JSON with this exact structure:
{
  "title": "Short topic title",
  "prompt": "The full essay question",
  "sampleResponse": "Model essay, paragraphs separated by \\n"
}"""

CORRECTION_SYSTEM_PROMPT = "You are an expert TOEFL Writing evaluator with deep knowledge of the official TOEFL rubric."

_RUBRIC = """Provide a detailed evaluation following the official TOEFL Writing rubric (0-5 scale) with these criteria:

1. CONTENT / TASK ACHIEVEMENT (0-5)
2. ORGANIZATION & COHERENCE (0-5)
3. GRAMMAR & VOCABULARY (0-5)
4. ACADEMIC STYLE (0-5)
5. OVERALL SCORE (0-5): average of the above
6. DETAILED FEEDBACK: specific strengths, weaknesses with examples, suggestions
7. REWRITE SUGGESTION: an improved version (%s words)

Generate ONLY valid JSON response:
{
  "scores": {"content": 0-5, "organization": 0-5, "grammar": 0-5, "style": 0-5, "overall": 0-5},
  "strengths": ["..."],
  "weaknesses": ["..."],
  "suggestions": ["..."],
  "rewriteSuggestion": "Improved version of the response",
  "wordCount": actual_word_count_of_student_response
}"""

_SYSTEM_PROMPTS = {
    "lecture": LECTURE_PROMPT,
    "conversation": CONVERSATION_PROMPT,
    "reading": READING_PROMPT,
}

_USER_PROMPTS = {
    "lecture": "Generate a lecture for TOEFL Listening practice.",
    "conversation": "Generate a conversation for TOEFL Listening practice.",
    "reading": "Generate a passage for TOEFL Reading practice.",
    "integrated": "Generate an Integrated Writing task for TOEFL Writing practice.",
    "independent": "Generate an Independent Writing task for TOEFL Writing practice.",
}

_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def build_correction_prompt(writing_type: str, user_response: str, *, prompt: Optional[str] = None,
                            reading_passage: Optional[str] = None, lecture_summary: Optional[str] = None) -> str:
    """Return the evaluator prompt for one writing response."""
    if writing_type == "integrated":
        return (
            "You are an expert TOEFL Writing evaluator. Evaluate this Task 1 Integrated Writing response.\n\n"
            f"READING PASSAGE:\n{reading_passage or ''}\n\n"
            f"LECTURE SUMMARY:\n{lecture_summary or ''}\n\n"
            f"STUDENT'S RESPONSE:\n{user_response}\n\n"
            "The response must summarize the lecture, explain how it answers each of the three reading points, "
            "and include no personal opinion.\n\n"
            + _RUBRIC % "150-225"
        )
    return (
        "You are an expert TOEFL Writing evaluator. Evaluate this Task 2 Independent Writing response.\n\n"
        f"PROMPT:\n{prompt or ''}\n\n"
        f"STUDENT'S RESPONSE:\n{user_response}\n\n"
        "The response needs a clear thesis, developed examples, formal register and at least 300 words.\n\n"
        + _RUBRIC % "300-350"
    )


class ContentClient:
    """Thin synchronous client over the chat-completions endpoint."""

    def __init__(self, api_key: str, base_url: str, model: str, timeout: float = 120.0,
                 transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, transport: Optional[httpx.BaseTransport] = None) -> "ContentClient":
        return cls(settings.LLM_API_KEY, settings.LLM_BASE_URL, settings.LLM_MODEL,
                   settings.LLM_TIMEOUT_SECONDS, transport=transport)

    def generate(self, task_type: str, writing_type: Optional[str] = None) -> dict:
        """Generate raw content for `task_type`.

        `writing` requires `writing_type` (`integrated` or `independent`).
        """
        if task_type == "writing":
            if writing_type == "integrated":
                system_prompt = INTEGRATED_WRITING_PROMPT
            elif writing_type == "independent":
                system_prompt = INDEPENDENT_WRITING_PROMPT
            else:
                raise ValueError("writing_type must be 'integrated' or 'independent'")
            user_prompt = _USER_PROMPTS[writing_type]
        elif task_type in _SYSTEM_PROMPTS:
            system_prompt = _SYSTEM_PROMPTS[task_type]
            user_prompt = _USER_PROMPTS[task_type]
        else:
            raise ValueError(f"unsupported task type: {task_type}")
        logger.info("Generating content for task type: %s %s", task_type, writing_type or "")
        return self._chat(system_prompt, user_prompt, operation=f"generate:{writing_type or task_type}")

    def correct_writing(self, writing_type: str, user_response: str, *, prompt: Optional[str] = None,
                        reading_passage: Optional[str] = None, lecture_summary: Optional[str] = None) -> dict:
        """Ask the evaluator model for a rubric correction of `user_response`."""
        correction_prompt = build_correction_prompt(
            writing_type, user_response, prompt=prompt,
            reading_passage=reading_passage, lecture_summary=lecture_summary,
        )
        logger.info("Correcting writing task: %s", writing_type)
        return self._chat(CORRECTION_SYSTEM_PROMPT, correction_prompt, operation=f"correct:{writing_type}")

    def _chat(self, system_prompt: str, user_prompt: str, operation: str) -> dict:
        if not self.api_key:
            raise ConfigurationError("LLM_API_KEY not configured")
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        with track_call("llm", operation, model=self.model):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(f"{self.base_url}/chat/completions", headers=headers, json=body)
            except httpx.HTTPError as exc:
                raise ProviderError(f"AI gateway unreachable: {exc}") from exc
            if not response.is_success:
                logger.error("AI gateway error: %s %s", response.status_code, response.text[:500])
                raise ProviderError(f"AI gateway error: {response.status_code}")
            try:
                content = response.json()["choices"][0]["message"]["content"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                raise ProviderError("AI gateway returned an unexpected response shape") from exc
            logger.debug("Generated content: %s", str(content)[:200])
            return _parse_json_object(content)


def _parse_json_object(content) -> dict:
    if isinstance(content, dict):
        return content
    text = _CODE_FENCE.sub("", str(content).strip())
    try:
        parsed = json.loads(text)
    except ValueError as exc:
        raise ProviderError("AI gateway returned content that is not valid JSON") from exc
    if not isinstance(parsed, dict):
        raise ProviderError("AI gateway returned JSON that is not an object")
    return parsed


def normalize_quiz_content(payload: dict, task_type: str) -> dict:
    """Validate a lecture/conversation/reading payload into task fields.

    Returns `{title, transcript, questions}` with questions in snake_case.
    Raises ProviderError when the model output is not usable as a quiz.
    """
    title = str(payload.get("title") or "").strip()
    transcript = payload.get("passage") if task_type == "reading" else payload.get("transcript")
    transcript = str(transcript or payload.get("transcript") or "").strip()
    if task_type == "conversation":
        transcript = _BR_TAG.sub("\n", transcript)
    if not title or not transcript:
        raise ProviderError("generated content is missing a title or transcript")
    raw_questions = payload.get("questions")
    if not isinstance(raw_questions, list) or not raw_questions:
        raise ProviderError("generated content has no questions")
    questions = []
    for idx, raw in enumerate(raw_questions):
        try:
            q = GeneratedQuestion.model_validate(raw)
        except ValidationError as exc:
            raise ProviderError(f"generated question {idx + 1} is malformed") from exc
        if not q.options or not 0 <= q.correct_answer < len(q.options):
            raise ProviderError(f"generated question {idx + 1} has no valid correct answer")
        questions.append(q.model_dump())
    return {"title": title, "transcript": transcript, "questions": questions}


def normalize_writing_content(payload: dict, writing_type: str) -> dict:
    """Map a writing payload (camelCase from the model) to task fields."""
    def pick(*keys):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None

    content = {
        "writing_type": writing_type,
        "prompt": pick("prompt"),
        "reading_passage": pick("readingPassage", "reading_passage"),
        "lecture_summary": pick("lectureSummary", "lecture_summary"),
        "question": pick("question"),
        "sample_response": pick("sampleResponse", "sample_response"),
    }
    if writing_type == "integrated" and not (content["reading_passage"] and content["lecture_summary"]):
        raise ProviderError("generated integrated task is missing the reading or lecture")
    if writing_type == "independent" and not content["prompt"]:
        raise ProviderError("generated independent task is missing the prompt")
    title = pick("title") or ("Integrated Writing" if writing_type == "integrated" else "Independent Writing")
    return {"title": title, "content": content}
