"""
Handlers package - Contains the Kopf event handlers for HelmRelease resources.

- release.py: create/update/delete stepping and periodic read of releases
"""
