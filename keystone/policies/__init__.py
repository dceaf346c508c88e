"""
Policy composition, validation and offline evaluation.

Trust statements and permission fragments are composed here, validated at
authoring time, and can be evaluated offline with IAM semantics.
"""
