"""
Input formats.

- erd: Mermaid-style entity-relationship diagrams
- cdm: Canonical (Common Data Model) entity catalog and matcher
"""
