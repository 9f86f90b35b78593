"""
Pure mappers from source payloads to canonical models.
"""
