"""Dual-tier sync — remote client, orchestrator, migration and scope binding."""
