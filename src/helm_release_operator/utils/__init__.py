"""
Utils package - Collaborator and helper modules for the Helm release operator.

Contains helper modules for:
- Physical identifier encoding and the diagnostics trail
- AWS access (EKS, STS, Secrets Manager, S3, EC2)
- Target cluster access and live object lookup
- The helm command line client, chart sources and values
"""
