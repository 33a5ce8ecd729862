"""
Attribute-level permission engine.

Generates a permission suite for every entity type, relaxes public fields to
EVERYONE, applies the static policy file and resolves, per operation and set
of caller roles, the exact fields the caller may use.
"""
