"""
Quest Ledger

Progress and reward ledger for a learning platform. It records quest
completions, credits coins and XP to learners exactly once per unit of
work, and maintains per-learner summaries, streaks, badges and trophies.

The platform features:
1. An idempotent completion ledger keyed on (learner, source unit, origin)
2. Learner summaries recomputed inside the same transaction as the credit
3. Badge and adventure-trophy evaluation
4. A sync collaborator that turns classroom submissions into completions
"""

__version__ = "0.1.0"
