"""
Discovery components - prober, signature classifier, device identifier,
host scanner and configuration.
"""
