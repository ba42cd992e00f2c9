"""
Subscription lifecycle: state machine, service and endpoints.
"""
