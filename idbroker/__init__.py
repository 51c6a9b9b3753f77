"""
Identity broker: federates login to external identity providers and issues
its own signed bearer tokens to registered client applications.
"""
