# src/manifest/__init__.py — v1
