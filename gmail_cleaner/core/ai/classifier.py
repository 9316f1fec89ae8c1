"""
AI Message Classifier

Classifies pending (unanalyzed) messages in batches. Each batch is one LLM
request carrying the categories the user already has, so repeated runs reuse
labels instead of inventing near-duplicates.

The reply is untrusted free text: it is fence-stripped, parsed as JSON and
validated element by element before anything touches the store.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple, Union
import json
import logging
import re

from pydantic import BaseModel, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from gmail_cleaner.core.database.models import Message
from gmail_cleaner.core.database.repository import MessageRepository
from gmail_cleaner.core.gmail.models import SuggestedAction
from gmail_cleaner.core.prompt_loader import get_prompt
from .providers.base import BaseLLMProvider, ClassificationProviderError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_SNIPPET_CHARS = 200

# Error markers reported in ClassificationRunResult.error
JSON_PARSE_ERROR = "JSON Parse Error"
UNEXPECTED_REPLY_SHAPE = "Unexpected Reply Shape"
AI_REQUEST_ERROR = "AI Request Error"

REQUIRED_FIELDS = ("id", "category", "action")

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")


class ReplyParseError(Exception):
    """The model reply could not be read as a JSON array."""

    def __init__(self, marker: str, detail: str = ""):
        super().__init__(f"{marker}: {detail}" if detail else marker)
        self.marker = marker
        self.detail = detail


class ValidClassification(BaseModel):
    """One well-formed element of the model reply."""
    id: str
    category: str
    action: SuggestedAction
    reasoning: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("id", "category")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("action", mode="before")
    @classmethod
    def lowercase_action(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("reasoning", mode="before")
    @classmethod
    def default_reasoning(cls, v):
        return "" if v is None else str(v)


@dataclass
class MalformedClassification:
    """A reply element that was dropped, with the reason."""
    element: Any
    reason: str


ParsedClassification = Union[ValidClassification, MalformedClassification]


@dataclass
class ClassificationRunResult:
    """Outcome of one classify_pending call."""
    processed_count: int = 0
    error: Optional[str] = None
    selected_count: int = 0
    malformed_count: int = 0

    @property
    def success(self) -> bool:
        return self.error is None


def strip_code_fences(raw: str) -> str:
    """Remove a leading ``` or ```json marker and a trailing ``` marker."""
    text = (raw or "").strip()
    text = _LEADING_FENCE.sub("", text, count=1)
    text = _TRAILING_FENCE.sub("", text, count=1)
    return text.strip()


def _parse_element(element: Any) -> ParsedClassification:
    if not isinstance(element, dict):
        return MalformedClassification(element, f"not an object ({type(element).__name__})")

    missing = [name for name in REQUIRED_FIELDS if element.get(name) in (None, "")]
    if missing:
        return MalformedClassification(element, f"missing {', '.join(missing)}")

    try:
        return ValidClassification(
            id=element["id"],
            category=element["category"],
            action=element["action"],
            reasoning=element.get("reasoning"),
        )
    except ValidationError as e:
        return MalformedClassification(element, f"invalid fields: {e.error_count()} error(s)")


def parse_classification_reply(raw: str) -> List[ParsedClassification]:
    """
    Parse a model reply into tagged elements.

    Args:
        raw: Reply text, possibly wrapped in Markdown code fences

    Returns:
        One ValidClassification or MalformedClassification per array element

    Raises:
        ReplyParseError: marker JSON_PARSE_ERROR if the text is not JSON,
            UNEXPECTED_REPLY_SHAPE if the JSON is not an array
    """
    text = strip_code_fences(raw)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ReplyParseError(JSON_PARSE_ERROR, str(e)) from e

    if not isinstance(data, list):
        raise ReplyParseError(UNEXPECTED_REPLY_SHAPE, f"expected array, got {type(data).__name__}")

    return [_parse_element(element) for element in data]


def _truncate_snippet(snippet: Optional[str], max_chars: int) -> str:
    """Bound snippet length sent to the model."""
    snippet = (snippet or "").strip()
    if len(snippet) <= max_chars:
        return snippet
    return snippet[:max_chars].rstrip() + "..."


class ClassificationEngine:
    """
    Batch classifier over the local message store.

    No retries: a failed batch leaves its messages unanalyzed, so the next
    call selects them again.
    """

    def __init__(self,
                 repository: MessageRepository,
                 provider: BaseLLMProvider,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 snippet_chars: int = DEFAULT_SNIPPET_CHARS):
        self.repository = repository
        self.provider = provider
        self.batch_size = max(1, batch_size)
        self.snippet_chars = max(0, snippet_chars)

    def build_prompts(self, messages: Sequence[Message], categories: Sequence[str]) -> Tuple[str, str]:
        """System instruction (task, contract, vocabulary, categories) and user payload."""
        actions = ", ".join(action.value for action in SuggestedAction)
        category_text = ", ".join(categories) if categories else get_prompt(
            "classifier.no_categories", default="(none yet)"
        )

        system_prompt = get_prompt(
            "classifier.system_prompt",
            actions=actions,
            categories=category_text,
        )

        payload = [
            {
                "id": message.message_id,
                "from": message.from_address or "",
                "subject": message.subject or "",
                "snippet": _truncate_snippet(message.snippet, self.snippet_chars),
            }
            for message in messages
        ]
        user_prompt = get_prompt(
            "classifier.user_template",
            default="{emails}",
            count=len(payload),
            emails=json.dumps(payload, ensure_ascii=False, indent=2),
        )
        return system_prompt, user_prompt

    async def classify_pending(self, user_id: str) -> ClassificationRunResult:
        """
        Classify up to batch_size unanalyzed messages, most recent first.

        Returns:
            ClassificationRunResult; processed_count=0 with no error when nothing is pending
        """
        pending = self.repository.find_unanalyzed(user_id, self.batch_size)
        if not pending:
            logger.info(f"No pending messages to classify for {user_id}")
            return ClassificationRunResult()

        # Read ids now; rows may be deleted (and expired) while the request is in flight
        batch_ids = [message.message_id for message in pending]
        categories = self.repository.find_distinct_categories(user_id)
        system_prompt, user_prompt = self.build_prompts(pending, categories)

        logger.info(
            f"Classifying {len(pending)} message(s) for {user_id} "
            f"with {len(categories)} existing categories"
        )

        try:
            raw = await self.provider.complete(system_prompt, user_prompt)
        except ClassificationProviderError as e:
            logger.error(f"Classification request failed for {user_id}: {e}")
            return ClassificationRunResult(error=AI_REQUEST_ERROR, selected_count=len(pending))

        logger.debug(f"Raw classification reply: {raw[:500] if raw else raw!r}")

        try:
            parsed = parse_classification_reply(raw)
        except ReplyParseError as e:
            logger.warning(f"Could not parse classification reply for {user_id}: {e}")
            return ClassificationRunResult(error=e.marker, selected_count=len(pending))

        return self._apply(user_id, batch_ids, parsed)

    def _apply(self,
               user_id: str,
               pending_ids: Sequence[str],
               parsed: Sequence[ParsedClassification]) -> ClassificationRunResult:
        result = ClassificationRunResult(selected_count=len(pending_ids))
        batch_ids = set(pending_ids)
        applied = set()

        for item in parsed:
            if isinstance(item, MalformedClassification):
                result.malformed_count += 1
                logger.debug(f"Dropping malformed reply element ({item.reason}): {item.element!r}")
                continue

            if item.id in applied:
                logger.debug(f"Duplicate classification for {item.id}, keeping the first")
                continue
            applied.add(item.id)

            if item.id not in batch_ids:
                logger.warning(f"Reply classified {item.id}, which was not in this batch; ignoring")
                continue

            try:
                affected = self.repository.mark_classified(
                    user_id,
                    item.id,
                    category=item.category,
                    suggested_action=item.action.value,
                    reasoning=item.reasoning,
                )
            except SQLAlchemyError as e:
                logger.warning(f"Failed to store classification for {item.id}: {e}")
                continue

            if affected:
                result.processed_count += 1
            else:
                # Deleted by a batch action since selection
                logger.info(f"Message {item.id} no longer stored, classification dropped")

        unanswered = len(batch_ids - applied)
        logger.info(
            f"Classified {result.processed_count}/{len(pending_ids)} message(s) for {user_id}"
            + (f", {result.malformed_count} malformed element(s)" if result.malformed_count else "")
            + (f", {unanswered} left pending" if unanswered else "")
        )
        return result
