"""Conversation turn driver and model service client."""
from localchat.agent.events import EventSink, NullEventSink, QueueEventSink
from localchat.agent.ndjson import NDJSONDecoder, iter_ndjson
from localchat.agent.ollama_client import ChatFrame, OllamaClient, parse_chat_frame
from localchat.agent.orchestrator import AgentOrchestrator

__all__ = [
    "EventSink",
    "NullEventSink",
    "QueueEventSink",
    "NDJSONDecoder",
    "iter_ndjson",
    "ChatFrame",
    "OllamaClient",
    "parse_chat_frame",
    "AgentOrchestrator",
]
