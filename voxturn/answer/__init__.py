from voxturn.answer.client import AnswerServiceClient
from voxturn.answer.normalize import normalize_reply
from voxturn.answer.types import AnswerRequest, AnswerResult

__all__ = ["AnswerServiceClient", "AnswerRequest", "AnswerResult", "normalize_reply"]
