"""
docaccess - Page Access Resolution Core

Effective permission resolution for tree-shaped document workspaces:
- Closure index over the page tree (fast "all ancestors" lookups)
- Group nesting closure and flattened group membership
- Ordered precedence resolution (depth, user over group, most permissive group)
- Resolution cache with mutation-triggered invalidation
"""

__version__ = "1.0.0"
