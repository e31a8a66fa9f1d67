"""
RAG (Retrieval-Augmented Generation) module: chat turns, tafsir discussion and generation.
"""
from .chat_pipeline import ChatPipeline, ChatTurnResult
from .generation import ResponseGenerator
from .tafsir_mode import TafsirMode

__all__ = ['ChatPipeline', 'ChatTurnResult', 'ResponseGenerator', 'TafsirMode']
