"""Webhook delivery service: registration, signed fan-out, retries and delivery history."""
