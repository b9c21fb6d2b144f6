"""Domain services: authorization, integration plugins and AI orchestration."""
