"""
Shared infrastructure: base model, exception taxonomy, logging, actor resolution.
"""
