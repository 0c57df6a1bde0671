"""
Tests package - Unit test suite for the secret syncer.

Contains:
- unit/: Unit tests for individual components
"""
