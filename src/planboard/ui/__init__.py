"""
planboard - module skeleton

File: src/planboard/ui/__init__.py
Last updated: 2026-10-19

Purpose
- Command-line interface emitting JSON documents for scripting.
"""
