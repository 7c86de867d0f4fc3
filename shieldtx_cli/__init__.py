"""
Command line interface for the ShieldTx SDK.
"""
