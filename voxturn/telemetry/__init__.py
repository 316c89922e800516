from voxturn.telemetry.logging import configure_logging, get_logger, turn_context

__all__ = ["configure_logging", "get_logger", "turn_context"]
