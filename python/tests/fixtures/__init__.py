"""
Pytest fixtures for fylo tests.

Fixtures are organized by test category:
- streams.py: Fake native stream handles, sample files
- watcher.py: Watcher directories and event recorders
"""
