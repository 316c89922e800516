from voxturn.tts.client import SpeechSynthesisClient
from voxturn.tts.voices import VoiceCatalogue, VoiceOption, load_catalogue

__all__ = ["SpeechSynthesisClient", "VoiceCatalogue", "VoiceOption", "load_catalogue"]
