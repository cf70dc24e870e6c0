"""Core domain logic for wearable vitals ingestion and alerting.

This package contains the business logic and domain models,
isolated from web and database frameworks for easy testing and reasoning.
"""
