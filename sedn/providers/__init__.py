"""Clients for the relay webhooks, fee oracles and external HTTP APIs."""
