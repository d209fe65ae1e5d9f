# llm service that turns syllabus topics into notes pages
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from .exceptions import LLMServiceError
from .models import PromptTemplate, RetrievedContext, TitlePage, TOCPage, TopicPage

logger = logging.getLogger(__name__)

TITLE_PAGE_PROMPT = PromptTemplate(
    system=(
        "You are a precise, school-level tutor and education content writer. Use the provided CONTEXT "
        "(official syllabus excerpts and supporting passages) to create accurate, syllabus-aligned notes. "
        "Do not invent new syllabus topics. Create engaging title pages with clear introductions that explain "
        "why students should study the chapter and give relevant daily life examples from Pakistan. "
        "Output must be JSON following the given schema. Use simple, clear English suitable for Class 9-12 students."
    ),
    temperature=0.1,
    max_tokens=2000,
)

TOC_PROMPT = PromptTemplate(
    system=(
        "You are a precise education content organizer. Output the exact topic list as provided, keeping the "
        "original order and phrasing from the official syllabus. Do not add, remove, or modify topic names."
    ),
    temperature=0.0,
    max_tokens=1000,
)

TOPIC_PAGE_PROMPT = PromptTemplate(
    system=(
        "You are a precise, school-level tutor and education content writer. Use the provided CONTEXT "
        "(official syllabus excerpts and supporting passages) to create accurate, syllabus-aligned notes. "
        "Do not invent new syllabus topics. For every topic produce: Definition (1-5 lines), Detailed "
        "Explanation (10-50+ lines), Real-life Example (3-6 lines, Pakistan-relevant when possible), Micro "
        "Example (1 line), and 3 Exam Questions (easy/medium/hard) with answers and brief solutions. Output "
        "must be JSON following the given schema. Use simple, clear English suitable for Class 9-12 students. "
        "If asked to compare (e.g., Vectors vs Scalars), include a \"comparison\" field. Avoid filler or "
        "repetition. If context contradicts, prefer the board syllabus and its exact phrasing."
    ),
    temperature=0.1,
    max_tokens=3000,
)

REQUIRED_TOPIC_FIELDS = [
    "page_type", "topic_title", "definition", "explanation",
    "example_detailed", "example_short", "questions",
]


# service for interacting with ollama llm api
class OllamaLLMService:
    """Local LLM served by Ollama"""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        timeout: int = 120,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

        # fail early when ollama is not running or the model is missing
        self._check_ollama_availability()

    def _check_ollama_availability(self):
        """Check if Ollama is running and model is available"""
        try:
            response = self.session.get(f"{self.base_url}/api/tags", timeout=5)
        except requests.exceptions.RequestException as e:
            raise ConnectionError(
                f"Cannot connect to Ollama at {self.base_url}. Start it with: ollama serve"
            ) from e

        if response.status_code != 200:
            raise ConnectionError("Ollama is not running. Please start it with: ollama serve")

        model_names = [model["name"] for model in response.json().get("models", [])]
        if not any(self.model in name for name in model_names):
            logger.warning(f"Model {self.model} not found. Available models: {model_names}")
            raise ValueError(f"Model {self.model} not available. Run: ollama pull {self.model}")

        logger.info(f"✓ Ollama is running with model: {self.model}")

    def generate_text(self, prompt: str, max_tokens: int = 2000, temperature: float = 0.3) -> str:
        """Generate text using Ollama"""
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
                "top_p": 0.9,
                "top_k": 40,
            },
        }

        try:
            response = self.session.post(f"{self.base_url}/api/generate", json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise LLMServiceError("Request timed out. The model might be too slow or overloaded.") from e
        except requests.exceptions.RequestException as e:
            raise LLMServiceError(f"Ollama request failed: {e}") from e

        if response.status_code != 200:
            raise LLMServiceError(f"Ollama API error: {response.status_code} - {response.text}")

        try:
            body = response.json()
        except ValueError as e:
            raise LLMServiceError(f"Ollama returned a non-JSON body: {response.text[:200]}") from e

        if not isinstance(body, dict) or not isinstance(body.get("response", ""), str):
            raise LLMServiceError("Ollama response body has an unexpected shape")
        return body.get("response", "").strip()

    def generate_chat_completion(self, messages: List[Dict[str, str]], max_tokens: int = 2000, temperature: float = 0.3) -> str:
        """Generate chat completion using Ollama"""
        return self.generate_text(self._messages_to_prompt(messages), max_tokens, temperature)

    # flatten chat messages into a single prompt string
    def _messages_to_prompt(self, messages: List[Dict[str, str]]) -> str:
        labels = {"system": "System", "user": "User", "assistant": "Assistant"}
        parts = [
            f"{labels[message.get('role', 'user')]}: {message.get('content', '')}"
            for message in messages
            if message.get("role", "user") in labels
        ]
        return "\n\n".join(parts) + "\n\nAssistant:"


# canned notes content, used when no real llm is configured
class TemplateContent:
    def title_page(self, subject: str, class_grade: int, board: str, chapter: str, syllabus_context: List[str]) -> Dict[str, Any]:
        return {
            "page_type": "title",
            "subject": subject,
            "class": class_grade,
            "board": board,
            "chapter": chapter,
            "introduction": (
                f"This chapter introduces the key ideas of {chapter} in {subject} for Class {class_grade} "
                f"students of the {board} board. You will learn the basic terms, see how each idea is used "
                f"in problems, and practise the question types that appear in board examinations. "
                f"The chapter builds a base for later chapters, so take time to understand each topic well."
            ),
            "why_study": (
                f"{chapter} is a core part of the {board} {subject} syllabus and questions from it appear "
                f"in almost every paper. The ideas in this chapter help you think clearly about real "
                f"situations, and they are used in fields like engineering, medicine, computing and business. "
                f"Learning them well now makes the rest of {subject} much easier."
            ),
            "daily_life_example": (
                f"Think about a normal day in Lahore or Karachi. When you plan a trip across the city, "
                f"compare prices at a bazaar or follow a recipe at home, you use the same kind of careful "
                f"thinking that {chapter} teaches. This chapter gives names and rules to things you already "
                f"see around you."
            ),
        }

    def toc_page(self, topics: List[str]) -> Dict[str, Any]:
        return {"page_type": "toc", "topics": list(topics)}

    def topic_page(self, topic: str, retrieved_context: List[RetrievedContext]) -> Dict[str, Any]:
        source_note = ""
        if retrieved_context:
            source_note = (
                f" These notes were checked against {len(retrieved_context)} supporting study "
                f"passages so that the wording matches what your board expects."
            )

        page = {
            "page_type": "topic",
            "topic_title": topic,
            "definition": (
                f"{topic} is a basic idea in this chapter. It gives us a clear way to describe, measure "
                f"and explain what we observe, and it is used again in later topics."
            ),
            "explanation": (
                f"{topic} is an important part of the syllabus. To understand it well, start with the "
                f"definition and make sure you know every term in it. Then look at how the idea is written "
                f"in symbols, and how it is shown in diagrams or tables.\n\n"
                f"Key points to remember:\n"
                f"• Learn the exact definition and the meaning of each word in it.\n"
                f"• Know the formula or rule linked with {topic} and the units used.\n"
                f"• Practise drawing clear diagrams and labelling them.\n"
                f"• Solve simple problems first, then move on to harder ones.\n\n"
                f"When you solve a problem, first write down what is given and what you need to find. "
                f"Next, choose the rule that links them and put the values in step by step. Always check "
                f"that your final answer has the right units and makes sense.\n\n"
                f"Many students mix up {topic} with nearby ideas. Read each question slowly, underline the "
                f"key words, and ask yourself which idea the question is really testing. Past papers are a "
                f"good way to see how examiners frame these questions.\n\n"
                f"Finally, connect {topic} with the world around you. Short notes, flash cards and teaching "
                f"a friend are simple ways to make the idea stick before your exam.{source_note}"
            ),
            "example_detailed": (
                f"Ayesha lives in Islamabad and walks to her school every morning. Her teacher asks the "
                f"class to use {topic} to describe the trip. Ayesha writes down the facts she knows, picks "
                f"the right rule, and works out the answer step by step. She then checks her units and "
                f"compares the result with what she sees on the road. This shows how {topic} helps us "
                f"describe simple daily events in a clear and exact way."
            ),
            "example_short": f"A rickshaw ride across Karachi can be described using {topic}.",
            "questions": [
                {
                    "difficulty": "easy",
                    "q": f"Define {topic} in your own words.",
                    "a": (
                        f"{topic} is a basic idea that helps us describe and measure what we observe. "
                        f"A good answer states the definition and gives one simple example."
                    ),
                },
                {
                    "difficulty": "medium",
                    "q": f"Give two real-life situations in Pakistan where {topic} is used and explain one of them.",
                    "a": (
                        "Two situations are planning a bus route and checking goods at a market. For the bus "
                        "route, we list the known values, apply the rule step by step and check the units."
                    ),
                },
                {
                    "difficulty": "hard",
                    "q": f"Solve a numerical problem based on {topic} and explain each step of your method.",
                    "a": (
                        "Write the given data, choose the correct formula, substitute the values with units, "
                        "solve step by step and state the final result with a short check that it is reasonable."
                    ),
                },
            ],
        }

        if re.search(r"\bvs\.?\b|\bversus\b", topic, flags=re.IGNORECASE):
            parts = re.split(r"\s+(?:vs\.?|versus)\s+", topic, flags=re.IGNORECASE)
            left, right = (parts + ["the other idea"])[:2]
            page["comparison"] = (
                f"Key differences between {left} and {right}:\n"
                f"• Definition and basic properties\n"
                f"• How each one is written and measured\n"
                f"• Where each one is used in problems\n"
                f"• Common mistakes when the two are mixed up"
            )

        return page

    def fallback_topic_page(self, topic: str) -> Dict[str, Any]:
        return {
            "page_type": "topic",
            "topic_title": topic,
            "definition": f"{topic} is an important concept in this subject that students need to understand thoroughly.",
            "explanation": (
                f"This topic covers the fundamental principles and applications of {topic}. Students should "
                f"focus on understanding the core concepts, mathematical relationships, and practical "
                f"applications. The topic builds upon previous knowledge and prepares students for more "
                f"advanced concepts in the subject."
            ),
            "example_detailed": (
                f"A practical example of {topic} can be seen in everyday life situations. For instance, when "
                f"students in Pakistan meet this concept in their daily activities, they can observe how the "
                f"principles apply to real-world scenarios."
            ),
            "example_short": f"{topic} is commonly observed in daily life situations.",
            "questions": [
                {"difficulty": "easy", "q": f"What is {topic}?",
                 "a": f"{topic} is a fundamental concept that students need to understand for their examinations."},
                {"difficulty": "medium", "q": f"How is {topic} applied in practical situations?",
                 "a": f"{topic} has various practical applications that can be observed in real-world scenarios."},
                {"difficulty": "hard", "q": f"Analyze the mathematical relationship in {topic}.",
                 "a": "The mathematical relationship involves understanding the underlying principles and applying appropriate formulas."},
            ],
        }


class LLMService:
    """Generates title, contents and topic pages.

    With the "template" provider every page comes from TemplateContent. With
    "ollama" the prompts go to a local model and any unusable answer falls
    back to the templates.
    """

    def __init__(
        self,
        provider: str = "template",
        base_url: str = "http://localhost:11434",
        model: str = "llama3",
        client: Optional[OllamaLLMService] = None,
    ):
        self.templates = TemplateContent()
        self.client = client

        # an injected client wins over the provider setting
        if self.client is None and provider == "ollama":
            try:
                self.client = OllamaLLMService(base_url=base_url, model=model)
            except (ConnectionError, ValueError) as e:
                logger.warning(f"Ollama unavailable, using template content: {e}")
        elif self.client is None and provider != "template":
            logger.warning(f"Unknown LLM provider '{provider}', using template content")

        self.provider = "ollama" if self.client else "template"

    def generate_title_page(
        self,
        subject: str,
        class_grade: int,
        board: str,
        chapter: str,
        syllabus_context: List[str],
    ) -> TitlePage:
        context = "\n\n".join(syllabus_context)
        user_message = (
            f"Task: Create Title Page and Chapter Introduction for:\n"
            f"{subject}, Class {class_grade}, Board {board}, Chapter \"{chapter}\"\n\n"
            f"Context: {context}\n\n"
            "Produce JSON with keys: page_type (\"title\"), subject, class, board, chapter, "
            "introduction, why_study, daily_life_example"
        )
        template = lambda: self.templates.title_page(subject, class_grade, board, chapter, syllabus_context)

        try:
            data = self._call_llm(TITLE_PAGE_PROMPT, user_message, template)
            # identity fields always come from the request
            data.update({"page_type": "title", "subject": subject, "class": class_grade, "board": board, "chapter": chapter})
            page = TitlePage.model_validate(data)
        except (LLMServiceError, ValidationError) as e:
            logger.warning(f"Title page generation failed, using template: {e}")
            page = TitlePage.model_validate(template())

        logger.info(f"Generated title page for {subject} - {chapter}")
        return page

    def generate_toc(self, topics: List[str]) -> TOCPage:
        user_message = (
            "Task: Output the exact topic list for the chapter as found in the syllabus passages.\n"
            f"Input: {json.dumps(topics)}\n"
            f"Output JSON: {{ \"page_type\":\"toc\", \"topics\":{json.dumps(topics)} }}"
        )

        try:
            data = self._call_llm(TOC_PROMPT, user_message, lambda: self.templates.toc_page(topics))
            page = TOCPage.model_validate(data)
            if page.topics != topics:
                logger.warning("Model changed the topic list, keeping the syllabus order")
                page = TOCPage(topics=list(topics))
        except (LLMServiceError, ValidationError) as e:
            logger.error(f"Failed to generate TOC: {e}")
            page = TOCPage(topics=list(topics))

        logger.info(f"Generated TOC with {len(topics)} topics")
        return page

    def generate_topic_page(self, topic_title: str, retrieved_context: List[RetrievedContext]) -> TopicPage:
        context_text = "\n\n---\n\n".join(
            f"Source: {ctx.source}\nContent: {ctx.content}" for ctx in retrieved_context
        )
        user_message = (
            f"Task: For Topic \"{topic_title}\" produce a full topic page. Use Context: {context_text}\n\n"
            "Produce JSON with keys: page_type (\"topic\"), topic_title, definition, explanation, "
            "comparison, example_detailed, example_short, questions (exactly three objects with "
            "difficulty easy/medium/hard, q, a)"
        )

        try:
            data = self._call_llm(
                TOPIC_PAGE_PROMPT,
                user_message,
                lambda: self.templates.topic_page(topic_title, retrieved_context),
            )
            if not self.validate_topic_page(data):
                raise LLMServiceError("Generated topic page failed validation")
            page = TopicPage.model_validate(data)
            logger.info(f"Generated topic page for: {topic_title}")
        except (LLMServiceError, ValidationError) as e:
            logger.error(f"Failed to generate topic page for {topic_title}: {e}")
            page = TopicPage.model_validate(self.templates.fallback_topic_page(topic_title))

        return page

    def validate_topic_page(self, page: Any) -> bool:
        if not isinstance(page, dict):
            return False

        for field in REQUIRED_TOPIC_FIELDS:
            if not page.get(field):
                logger.warning(f"Missing required field: {field}")
                return False

        questions = page["questions"]
        if not isinstance(questions, list) or len(questions) != 3:
            logger.warning("Invalid questions array")
            return False

        for question in questions:
            if not isinstance(question, dict) or not all(question.get(key) for key in ("difficulty", "q", "a")):
                logger.warning("Invalid question format")
                return False

        return True

    def get_prompt(self, page_type: str) -> PromptTemplate:
        prompts = {"title": TITLE_PAGE_PROMPT, "toc": TOC_PROMPT, "topic": TOPIC_PAGE_PROMPT}
        return prompts[page_type]

    # send a prompt to the model, or render the template when no model is configured
    def _call_llm(self, prompt: PromptTemplate, user_message: str, template: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        if self.client is None:
            return template()

        messages = [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": user_message},
        ]
        text = self.client.generate_chat_completion(messages, prompt.max_tokens, prompt.temperature)
        return self._parse_json(text)

    def _parse_json(self, text: str) -> Dict[str, Any]:
        # models sometimes wrap the object in prose or code fences
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise LLMServiceError("Model response did not contain a JSON object")
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise LLMServiceError(f"Model response was not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise LLMServiceError("Model response was not a JSON object")
        return data
