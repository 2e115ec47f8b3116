"""Connectors — where host-browser events enter the engine."""
