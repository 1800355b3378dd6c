"""
sopcoach: retrieval-augmented SOP training assistant for manufacturing operators.

Answers operator questions from indexed standard operating procedures, streams
the answers, and runs adaptive quizzes with progress tracking.
"""

__version__ = "0.1.0"
