from voxturn.recognition.adapter import RecognitionStreamAdapter
from voxturn.recognition.base import EngineFactory, RecognitionEngine, RecognitionListener

__all__ = ["RecognitionStreamAdapter", "RecognitionEngine", "RecognitionListener", "EngineFactory"]
