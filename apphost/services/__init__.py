"""Long-lived services started alongside the listener"""
