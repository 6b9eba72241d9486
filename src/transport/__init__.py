# src/transport/__init__.py — v1
