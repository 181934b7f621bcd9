"""
Conversation intelligence for real-estate client conversations.

Cost-tiered analysis (regex → mini model → full model) that turns a pasted
conversation into behavioral signals, extracted entities, a governed
pipeline-stage suggestion, a next action and a reply draft.
"""

__version__ = "0.1.0"
