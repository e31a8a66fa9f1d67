"""
Retrieval module: semantic verse search and conversation-aware re-ranking.
"""

# allows: from quran_assistant.retrieval import SemanticRetriever, ConversationContextTracker
from .semantic_search import SemanticRetriever
from .context_reranker import ConversationContextTracker, compute_context_score

__all__ = ['SemanticRetriever', 'ConversationContextTracker', 'compute_context_score']
