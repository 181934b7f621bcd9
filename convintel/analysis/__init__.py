"""Analysis stages and the orchestrating ConversationAnalyzer."""
