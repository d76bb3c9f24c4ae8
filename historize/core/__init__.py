"""
Core models, configuration, validators and derivations.
"""
