# src/hashing/__init__.py — v1
