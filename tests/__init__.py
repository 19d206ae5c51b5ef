"""
Tests package - Unit test suite for the Helm release operator.

Contains:
- unit/: Unit tests for individual components, with boto3, kubernetes and
  helm collaborators mocked out
"""
