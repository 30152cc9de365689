"""Shipment Drafts module for ShipFlow

Multi-step shipment drafts: section accumulation, completeness checks, step
navigation, draft lifecycle (create/resume) and booking orchestration.
"""
