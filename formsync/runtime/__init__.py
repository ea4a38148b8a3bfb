"""
Runtime package for validation scheduling and state publication.

Architecture:
- Adapts validation suites to one asynchronous call
- Runs per-field and root validation pipelines
- Schedules dependency-triggered revalidation
- Reconciles the tree with the snapshot
- Aggregates outcomes and monitors execution
"""
