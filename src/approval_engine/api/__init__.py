"""HTTP surface for the approval engine."""
