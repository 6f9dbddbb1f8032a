"""Client-side workflow for turning an idea into an optimized prompt.

``Workflow`` is the sequence controller behind the UI.  It owns the
current status, the user's input, the clarification questions and the
answers collected so far, and it triggers one of two call sequences:

* Fast:    Idle -> GeneratingResult -> Completed
* Clarify: Idle -> GeneratingQuestions -> AwaitingInput
           -> GeneratingResult -> Completed

Any failure while generating moves to Error with a message for the
user; input and answers are kept so the run can be retried by hand.
Nothing is retried automatically.  At most one backend call is in
flight at a time, and every call is tagged with a run number so a
response that arrives after ``reset()`` or a newer run is dropped.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
import logging

from pydantic import ValidationError as PydanticValidationError

from clarity.models.router import CLARIFY_FINAL, CLARIFY_QUESTIONS, FAST
from clarity.models.schemas import MAX_QUESTIONS, ClarificationQuestion, ClarificationResponse, QAPair
from clarity.utils.errors import (
    ClarityError,
    EmptyUpstreamResponse,
    MalformedUpstreamJSON,
    Unauthorized,
    UpstreamHTTPError,
    UpstreamTimeout,
)
from clarity.utils.storage import CredentialStore

logger = logging.getLogger(__name__)

# User-facing messages
MSG_MISSING_KEY = "请先配置 Google API Key"
MSG_INVALID_KEY = "API Key 无效或过期，请检查配置。"
MSG_TIMEOUT = "请求超时，请稍后重试。"
MSG_EMPTY = "AI 未返回内容，请稍后重试。"
MSG_MALFORMED = "解析澄清问题失败。"
MSG_NO_QUESTIONS = "未能生成澄清问题，请补充描述后重试。"
MSG_FINAL_FAILED = "生成最终指令失败。"
MSG_GENERIC = "出错了，请稍后重试。"

_KEY_REJECTED_STATUSES = {400, 401, 403}


class WorkflowStatus(str, Enum):
    IDLE = "IDLE"
    GENERATING_QUESTIONS = "GENERATING_QUESTIONS"
    AWAITING_INPUT = "AWAITING_INPUT"
    GENERATING_RESULT = "GENERATING_RESULT"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class Mode(str, Enum):
    FAST = "FAST"
    CLARIFY = "CLARIFY"


BUSY = {WorkflowStatus.GENERATING_QUESTIONS, WorkflowStatus.GENERATING_RESULT}


class Backend(Protocol):
    async def call(
        self,
        action: str,
        input: str,
        qa_pairs: Optional[List[QAPair]] = None,
        api_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


def message_for(exc: Exception, final_step: bool = False) -> str:
    if isinstance(exc, UpstreamTimeout):
        return MSG_TIMEOUT
    if isinstance(exc, Unauthorized):
        return MSG_INVALID_KEY
    if isinstance(exc, UpstreamHTTPError) and exc.upstream_status in _KEY_REJECTED_STATUSES:
        return MSG_INVALID_KEY
    if isinstance(exc, MalformedUpstreamJSON):
        return MSG_MALFORMED
    if isinstance(exc, EmptyUpstreamResponse):
        return MSG_EMPTY
    return MSG_FINAL_FAILED if final_step else MSG_GENERIC


def _result_text(body: Dict[str, Any]) -> str:
    result = body.get("result") if isinstance(body, dict) else None
    if not isinstance(result, str) or not result.strip():
        raise EmptyUpstreamResponse()
    return result


def _questions(body: Dict[str, Any]) -> List[ClarificationQuestion]:
    try:
        parsed = ClarificationResponse.model_validate(body)
    except PydanticValidationError as exc:
        raise MalformedUpstreamJSON() from exc
    return list(parsed.questions[:MAX_QUESTIONS])


class Workflow:
    def __init__(
        self,
        backend: Backend,
        credentials: Optional[CredentialStore] = None,
        require_credential: Optional[bool] = None,
        mode: Mode = Mode.FAST,
    ):
        self.backend = backend
        self.credentials = credentials
        # without a store the key is held server-side unless told otherwise
        self.require_credential = credentials is not None if require_credential is None else require_credential
        # read once at startup; edits go through set_credential and clear_credential
        self.api_key = credentials.load() if credentials is not None else None
        self.mode = mode
        self._run = 0
        self._clear()

    def _clear(self) -> None:
        self.status = WorkflowStatus.IDLE
        self.input = ""
        self.result = ""
        self.questions: List[ClarificationQuestion] = []
        self.answers: Dict[str, str] = {}
        self.error: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.status in BUSY

    @property
    def can_submit(self) -> bool:
        if not self.questions or len(self.answers) < len(self.questions):
            return False
        return all(q.id in self.answers for q in self.questions)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "mode": self.mode.value,
            "input": self.input,
            "result": self.result,
            "questions": [q.model_dump() for q in self.questions],
            "answers": dict(self.answers),
            "error": self.error,
        }

    # Edits

    def set_input(self, text: str) -> bool:
        if self.busy or self.status == WorkflowStatus.AWAITING_INPUT:
            return False
        self.input = text
        return True

    def set_mode(self, mode: Mode) -> bool:
        if self.status not in (WorkflowStatus.IDLE, WorkflowStatus.COMPLETED):
            return False
        self.mode = mode
        self.questions = []
        self.answers = {}
        self.error = None
        if self.status == WorkflowStatus.COMPLETED:
            self.status = WorkflowStatus.IDLE
            self.result = ""
        return True

    def select_answer(self, question_id: str, option_id: str) -> bool:
        if self.status not in (WorkflowStatus.AWAITING_INPUT, WorkflowStatus.ERROR):
            return False
        for q in self.questions:
            if q.id == question_id:
                value = q.option_value(option_id)
                if value is None:
                    return False
                self.answers[question_id] = value
                return True
        return False

    def qa_pairs(self) -> List[QAPair]:
        return [QAPair(question=q.text, answer=self.answers[q.id]) for q in self.questions if q.id in self.answers]

    def reset(self) -> None:
        # invalidates any call still in flight
        self._run += 1
        self._clear()

    # Runs

    def set_credential(self, value: str) -> bool:
        value = (value or "").strip()
        if not value:
            return False
        if self.credentials is not None:
            self.credentials.save(value)
        self.api_key = value
        return True

    def clear_credential(self) -> None:
        if self.credentials is not None:
            self.credentials.clear()
        self.api_key = None

    def _begin(self, status: WorkflowStatus) -> int:
        self._run += 1
        self.status = status
        self.error = None
        return self._run

    def _stale(self, run: int) -> bool:
        if run != self._run:
            logger.debug("Discarding response for superseded run %s", run)
            return True
        return False

    def _fail(self, run: int, message: str) -> None:
        if self._stale(run):
            return
        self.error = message
        self.status = WorkflowStatus.ERROR

    async def generate(self) -> None:
        if self.status not in (WorkflowStatus.IDLE, WorkflowStatus.COMPLETED, WorkflowStatus.ERROR):
            return
        if not self.input.strip():
            return
        api_key = self.api_key
        if self.require_credential and not api_key:
            self.error = MSG_MISSING_KEY
            return
        self.result = ""
        if self.mode == Mode.FAST:
            await self._run_fast(api_key)
        else:
            await self._run_questions(api_key)

    async def _run_fast(self, api_key: Optional[str]) -> None:
        run = self._begin(WorkflowStatus.GENERATING_RESULT)
        try:
            result = _result_text(await self.backend.call(FAST, self.input, api_key=api_key))
        except ClarityError as exc:
            logger.warning("Fast generation failed: %s", exc.code)
            self._fail(run, message_for(exc))
            return
        except Exception:
            logger.exception("Fast generation failed")
            self._fail(run, MSG_GENERIC)
            return
        if self._stale(run):
            return
        self.result = result
        self.status = WorkflowStatus.COMPLETED

    async def _run_questions(self, api_key: Optional[str]) -> None:
        run = self._begin(WorkflowStatus.GENERATING_QUESTIONS)
        self.questions = []
        self.answers = {}
        try:
            questions = _questions(await self.backend.call(CLARIFY_QUESTIONS, self.input, api_key=api_key))
        except ClarityError as exc:
            logger.warning("Question generation failed: %s", exc.code)
            self._fail(run, message_for(exc))
            return
        except Exception:
            logger.exception("Question generation failed")
            self._fail(run, MSG_GENERIC)
            return
        if not questions:
            self._fail(run, MSG_NO_QUESTIONS)
            return
        if self._stale(run):
            return
        self.questions = questions
        self.status = WorkflowStatus.AWAITING_INPUT

    async def submit_answers(self) -> None:
        if self.status not in (WorkflowStatus.AWAITING_INPUT, WorkflowStatus.ERROR):
            return
        if not self.can_submit:
            return
        api_key = self.api_key
        if self.require_credential and not api_key:
            self.error = MSG_MISSING_KEY
            return
        run = self._begin(WorkflowStatus.GENERATING_RESULT)
        try:
            body = await self.backend.call(CLARIFY_FINAL, self.input, qa_pairs=self.qa_pairs(), api_key=api_key)
            result = _result_text(body)
        except ClarityError as exc:
            logger.warning("Final generation failed: %s", exc.code)
            self._fail(run, message_for(exc, final_step=True))
            return
        except Exception:
            logger.exception("Final generation failed")
            self._fail(run, MSG_FINAL_FAILED)
            return
        if self._stale(run):
            return
        self.result = result
        self.status = WorkflowStatus.COMPLETED
