"""Care plan scheduling core.

This package turns a caregiver's recurring care plan configuration into dated
task occurrences, tracks their completion, and classifies their urgency for
display. Storage is pluggable so the domain logic stays easy to test.
"""
