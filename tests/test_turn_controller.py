from __future__ import annotations

import pytest

from voxturn.orchestrator.events import TurnState
from voxturn.orchestrator.policies import EndpointPolicy, TurnPolicies
from voxturn.orchestrator.state_machine import RECOGNITION_UNAVAILABLE_TEXT

from tests.helpers import Harness, settle

pytestmark = pytest.mark.anyio


def roles_and_texts(harness: Harness) -> list[tuple[str, str]]:
    return [(m.role, m.text) for m in harness.controller.messages]


async def test_mic_on_moves_idle_to_listening() -> None:
    h = Harness()
    assert h.controller.state is TurnState.IDLE
    assert h.controller.toggle_mic() is True
    assert h.controller.state is TurnState.LISTENING
    assert h.controller.mic_active is True
    assert h.engines.calls == 1


async def test_two_turns_keep_strict_message_order() -> None:
    h = Harness()
    h.controller.toggle_mic()

    await h.utter("hola buenos días")
    assert h.controller.state is TurnState.AWAITING_REPLY
    resource = await h.reply_and_speak("Hola, ¿en qué te ayudo?")
    assert h.controller.state is TurnState.SPEAKING
    resource.finish()
    await settle()

    await h.utter("quiero saber el horario")
    resource = await h.reply_and_speak("Abrimos a las nueve.")
    resource.finish()
    await settle()

    assert roles_and_texts(h) == [
        ("user", "hola buenos días"),
        ("assistant", "Hola, ¿en qué te ayudo?"),
        ("user", "quiero saber el horario"),
        ("assistant", "Abrimos a las nueve."),
    ]
    assert [(e.role, e.content) for e in h.controller.history] == roles_and_texts(h)


async def test_request_history_excludes_current_utterance() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    assert h.answers.calls[0] == ("hola buenos días", [])
    assert len(h.controller.history) == 1
    (await h.reply_and_speak("Hola")).finish()
    await settle()

    await h.utter("otra pregunta")
    utterance, history = h.answers.calls[1]
    assert utterance == "otra pregunta"
    assert [(e.role, e.content) for e in history] == [("user", "hola buenos días"), ("assistant", "Hola")]


async def test_barge_in_stops_speaking_in_same_tick() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    resource = await h.reply_and_speak("Una respuesta bastante larga")
    assert h.controller.is_speaking
    messages_before = h.controller.messages

    h.result_index += 1
    h.say("espera")

    assert h.controller.is_speaking is False
    assert h.controller.state is TurnState.COMMITTING
    assert resource.paused and resource.current_time == 0
    assert h.playback.is_vocalizing is False
    assert h.controller.messages == messages_before


async def test_barge_in_then_commit_starts_next_turn() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    first = await h.reply_and_speak("Respuesta uno")

    await h.utter("otra cosa por favor")

    assert first.closed
    assert h.controller.state is TurnState.AWAITING_REPLY
    assert [call[0] for call in h.answers.calls] == ["hola buenos días", "otra cosa por favor"]
    # The cut-off clip never reports completion.
    assert h.controller.messages[-1].text == "otra cosa por favor"


async def test_short_word_never_reaches_answer_service() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola")
    h.clock.advance(5)
    await settle()

    assert h.answers.calls == []
    assert h.controller.messages == ()
    assert h.controller.state is TurnState.LISTENING


async def test_three_word_utterance_commits_exactly_once() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.result_index += 1
    h.engine.speech_start()
    h.say("hola")
    h.clock.advance(0.5)
    h.say("hola buenos")
    h.clock.advance(0.5)
    h.say("hola buenos días")
    h.clock.advance(1.4)
    await settle()
    assert h.answers.calls == []
    assert h.controller.is_processing is True

    h.clock.advance(0.1)
    h.clock.advance(3)
    await settle()
    assert [call[0] for call in h.answers.calls] == ["hola buenos días"]


async def test_mute_while_speaking_keeps_audio_running() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    resource = await h.reply_and_speak("Hola")

    assert h.controller.toggle_mute() is True

    assert resource.muted is True
    assert resource.playing is True
    assert h.controller.state is TurnState.SPEAKING
    assert h.controller.is_speaking is True


async def test_mute_applies_to_next_clip() -> None:
    h = Harness()
    h.controller.set_muted(True)
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    resource = await h.reply_and_speak("Hola")
    assert resource.muted is True
    assert resource.playback_rate == pytest.approx(0.85)


async def test_mic_off_does_not_cancel_pending_reply() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    assert h.controller.is_processing

    h.controller.toggle_mic()
    assert h.controller.mic_active is False
    assert h.engine.stopped is True

    h.answers.reply("Respuesta tardía")
    await settle()
    assert h.controller.messages[-1].text == "Respuesta tardía"
    assert h.controller.state is TurnState.SPEAKING

    h.output.current.finish()
    await settle()
    assert h.controller.state is TurnState.IDLE
    h.clock.advance(1.0)
    await settle()
    assert h.controller.is_processing is False


async def test_mic_off_from_listening_goes_idle() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.result_index += 1
    h.say("hola buenos")
    assert h.controller.state is TurnState.COMMITTING

    h.controller.toggle_mic()

    assert h.controller.state is TurnState.IDLE
    assert h.controller.input_buffer == ""
    h.clock.advance(5)
    await settle()
    assert h.answers.calls == []


async def test_recognizer_end_restarts_once_while_mic_on() -> None:
    h = Harness()
    h.controller.toggle_mic()
    first = h.engine

    first.end()

    assert h.engines.calls == 2
    assert h.controller.recognition.restarts == 1
    assert h.controller.mic_active is True
    assert h.controller.state is TurnState.LISTENING


async def test_recognizer_end_after_mic_off_does_not_restart() -> None:
    h = Harness()
    h.controller.toggle_mic()
    engine = h.engine
    h.controller.toggle_mic()

    engine.end()

    assert h.engines.calls == 1
    assert h.controller.mic_active is False


async def test_recognizer_end_flushes_pending_utterance() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.result_index += 1
    h.say("dónde queda la biblioteca", final=True)

    h.engine.end()
    await settle()

    assert [call[0] for call in h.answers.calls] == ["dónde queda la biblioteca"]
    assert h.engines.calls == 2


async def test_recognizer_end_drops_partial_transcript() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.result_index += 1
    h.say("dónde queda la")

    h.engine.end()
    h.clock.advance(5)
    await settle()

    assert h.answers.calls == []
    assert h.controller.input_buffer == ""
    assert h.controller.state is TurnState.LISTENING
    assert h.engines.calls == 2


async def test_speech_without_words_lapses_back_to_listening() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.engine.speech_start()
    assert h.controller.state is TurnState.COMMITTING

    h.clock.advance(1.5)

    assert h.controller.state is TurnState.LISTENING
    assert h.controller.is_processing is False
    assert h.answers.calls == []


async def test_recognizer_start_failure_leaves_mic_off() -> None:
    h = Harness()
    h.engines.start_error = OSError("Device unavailable")

    assert h.controller.toggle_mic() is False
    assert h.controller.state is TurnState.IDLE
    assert h.controller.recognition.running is False
    assert h.controller.messages == ()

    h.engines.start_error = None
    assert h.controller.toggle_mic() is True
    assert h.controller.state is TurnState.LISTENING
    assert h.engines.calls == 2


async def test_failed_restart_turns_mic_off() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.engines.start_error = OSError("Device unavailable")

    h.engine.end()

    assert h.controller.mic_active is False
    assert h.controller.recognition.running is False
    assert h.controller.state is TurnState.IDLE
    h.engines.start_error = None
    assert h.controller.toggle_mic() is True
    assert h.engines.calls == 3


async def test_transient_error_keeps_session_alive() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.engine.error("network", "socket closed")
    h.engine.end()
    assert h.controller.mic_active is True
    assert h.engines.calls == 2


async def test_commit_while_awaiting_reply_is_dropped() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    await h.utter("segunda pregunta aquí")

    assert [call[0] for call in h.answers.calls] == ["hola buenos días"]
    assert [m.text for m in h.controller.messages] == ["hola buenos días"]
    assert h.controller.state is TurnState.AWAITING_REPLY


async def test_send_text_is_rejected_while_reply_outstanding() -> None:
    h = Harness()
    assert h.controller.send_text("primera pregunta") is True
    await settle()
    assert h.controller.send_text("segunda pregunta") is False
    assert len(h.answers.calls) == 1


async def test_text_turn_skips_speaking() -> None:
    h = Harness()
    h.controller.toggle_mic()
    h.controller.send_text("¿Cuál es el horario?")
    await settle()
    h.answers.reply("De nueve a cinco.")
    await settle()

    assert h.synth.requests == []
    assert h.controller.state is TurnState.LISTENING
    assert h.controller.is_processing is False
    assert [m.from_voice for m in h.controller.messages] == [False, False]


async def test_failed_voice_turn_speaks_fallback() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    h.answers.fail("No se pudo obtener respuesta de la IA.")
    await settle()

    assert roles_and_texts(h)[-1] == ("assistant", "No se pudo obtener respuesta de la IA.")
    assert h.synth.requests[-1][0] == "No se pudo obtener respuesta de la IA."
    assert h.controller.state is TurnState.SPEAKING


async def test_failed_turn_can_stay_silent() -> None:
    policies = TurnPolicies(endpoint=EndpointPolicy(), speak_fallback=False)
    h = Harness(policies=policies)
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    h.answers.fail()
    await settle()

    assert h.synth.requests == []
    assert h.controller.state is TurnState.LISTENING
    assert len(h.controller.history) == 2


async def test_playback_end_holds_processing_for_grace_period() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    (await h.reply_and_speak("Hola")).finish()
    await settle()

    assert h.controller.state is TurnState.LISTENING
    assert h.controller.is_speaking is False
    assert h.controller.is_processing is True
    h.clock.advance(0.99)
    assert h.controller.is_processing is True
    h.clock.advance(0.01)
    assert h.controller.is_processing is False


async def test_playback_failure_returns_to_listening() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    h.synth.fail_with = "tts returned empty audio"
    h.answers.reply("Hola")
    await settle()

    assert h.controller.state is TurnState.LISTENING
    assert h.controller.is_speaking is False
    assert len(h.synth.requests) == 1
    assert h.controller.messages[-1].text == "Hola"


async def test_output_device_error_returns_to_listening() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    h.output.play_error = ValueError("No output device matching 'Headset'")
    h.answers.reply("Hola")
    await settle()

    assert h.controller.state is TurnState.LISTENING
    assert h.controller.is_speaking is False
    assert h.output.current.closed
    assert h.playback.busy is False

    h.output.play_error = None
    await h.utter("otra pregunta por favor")
    assert [call[0] for call in h.answers.calls] == ["hola buenos días", "otra pregunta por favor"]


async def test_unavailable_recognition_is_reported_once() -> None:
    h = Harness(recognition_available=False)

    h.controller.toggle_mic()
    h.controller.toggle_mic()

    assert h.controller.mic_active is False
    assert h.controller.state is TurnState.IDLE
    assert [m.text for m in h.controller.messages] == [RECOGNITION_UNAVAILABLE_TEXT]
    assert h.engines.calls == 1


async def test_clear_history_empties_log() -> None:
    h = Harness()
    h.controller.send_text("hola buenos días")
    await settle()
    h.answers.reply("Hola")
    await settle()

    h.controller.clear_history()

    assert h.controller.messages == ()
    assert h.controller.history == ()


async def test_snapshots_are_published_to_subscribers() -> None:
    h = Harness()
    snapshots = []
    h.controller.subscribe(snapshots.append)

    h.controller.toggle_mic()
    h.result_index += 1
    h.say("hola buenos")

    assert snapshots[-1].mic_active is True
    assert snapshots[-1].input_buffer == "hola buenos"
    assert snapshots[-1].to_dict()["state"] == "COMMITTING"


async def test_greet_speaks_welcome_message() -> None:
    policies = TurnPolicies(endpoint=EndpointPolicy(), welcome_message="Hola, soy tu asistente virtual.")
    h = Harness(policies=policies)

    assert h.controller.greet() is True
    await settle()

    assert roles_and_texts(h) == [("assistant", "Hola, soy tu asistente virtual.")]
    assert h.controller.history == ()
    assert h.controller.is_speaking
    h.output.current.finish()
    await settle()
    assert h.controller.state is TurnState.IDLE


async def test_dispose_releases_everything() -> None:
    h = Harness()
    h.controller.toggle_mic()
    await h.utter("hola buenos días")
    engine = h.engine

    h.controller.dispose()
    await settle()

    assert engine.stopped is True
    assert h.controller.mic_active is False
    assert h.clock.pending() == 0
    h.controller.send_text("ignored after dispose")
    assert h.controller.messages[-1].text == "hola buenos días"
