"""Ambient services: settings, logging, scoped context, registry and record store."""
