"""
Plan catalog: plan definitions, service and endpoints.
"""
