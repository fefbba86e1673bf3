"""
FlowGate API - HTTP surface of the orchestration layer.
"""
