"""
ERD Deployer.

Deploys Mermaid ``erDiagram`` models to a metadata-driven data platform:
parse the diagram, match canonical entities, plan dependency-ordered
operations and execute them idempotently through the Web API.
"""

__version__ = "0.1.0"
