"""Integration tests for the HCC pipeline.

These tests verify end-to-end functionality including:
- Complete four-stage runs with a fake generator
- Crash recovery and cooperative cancel
- Persistence and resume across orchestrators
- Audit trails in the job store
"""
