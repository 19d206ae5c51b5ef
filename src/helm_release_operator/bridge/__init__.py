"""
Bridge relay: the entrypoint deployed as a function inside a private VPC.

The relay receives one action at a time from the operator and runs it with
the same release manager the operator uses for directly reachable clusters.
"""
