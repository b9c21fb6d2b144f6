"""
AI orchestration services.

The planning coordinator classifies a fleet question, fans it out to domain
specialist agents that call tenant integrations through the completion
service's tool calling, and synthesizes their findings into one answer.
"""
