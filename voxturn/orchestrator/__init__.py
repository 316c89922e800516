from voxturn.orchestrator.events import ConversationMessage, HistoryEntry, TurnState, UISnapshot

__all__ = ["TurnState", "ConversationMessage", "HistoryEntry", "UISnapshot"]
