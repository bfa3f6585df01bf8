"""Core service: config, persistence, security, chat socket and REST API."""
