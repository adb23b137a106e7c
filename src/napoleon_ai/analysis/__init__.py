"""Channel-agnostic message analysis pipeline for Napoleon AI.

Turns a raw provider message into a single AnalysisResult
(summary, priority, sentiment, topics, action items) and
persists it exactly once per message.
"""
