"""
layerhost - Property-Based Testing Suite

Hypothesis properties for layered configuration: precedence, case-insensitive
keys and section views.
"""
