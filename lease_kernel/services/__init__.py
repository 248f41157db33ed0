"""Imperative shell: services that own transaction boundaries."""
