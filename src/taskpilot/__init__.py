"""
TaskPilot Automations - rule engine for project task automations

This package contains the automation backend services:
- api: FastAPI operator endpoints (rules, history, previews)
- automations: Rule store, channel adapters and the rule engine
- storage: Database adapter and declarative base
- events: Domain events and the NATS event bus
- integrations: Outbound service clients (SMTP)
- workers: Background worker entry points
- platform: Cross-cutting concerns (config, logging, metrics)
"""

__version__ = "0.1.0"
