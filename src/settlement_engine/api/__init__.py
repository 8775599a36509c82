"""Ops HTTP API for the reconciliation workers."""
