"""Production cost allocation and byproduct reconciliation engine."""
